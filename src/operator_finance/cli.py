"""Operator finance CLI — scoring, commission and policy tooling.

Usage:
    python -m operator_finance.cli score --metrics metrics.json
    python -m operator_finance.cli commission --tier tier_2 --fare 500
    python -m operator_finance.cli withholding --gross 10000 --operator-type tnvs
    python -m operator_finance.cli balance --operator OP-001
    python -m operator_finance.cli check-config

Paths come from --config/--data, else OPERATOR_FINANCE_CONFIG_DIR and
OPERATOR_FINANCE_DATA_DIR (a .env file in the working directory is
loaded first), else config/ and data/ at the repository root.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

from operator_finance.compensation.commission import CommissionCalculator
from operator_finance.compensation.ledger import TransactionLedger
from operator_finance.compensation.tax import WithholdingTaxRule
from operator_finance.errors import OperatorFinanceError
from operator_finance.models.performance import CommissionTier, MetricSet, ScoringFrequency
from operator_finance.persistence.ledger_store import LedgerStore
from operator_finance.policy.checks import check_policy
from operator_finance.policy.resolver import PolicyResolver
from operator_finance.scoring.calculator import ScoreCalculator
from operator_finance.scoring.periods import period_bounds

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"

CONFIG_ENV = "OPERATOR_FINANCE_CONFIG_DIR"
DATA_ENV = "OPERATOR_FINANCE_DATA_DIR"


def _resolver(args: argparse.Namespace) -> PolicyResolver:
    return PolicyResolver.from_config_dir(args.config)


def _decimal(value: str) -> Decimal:
    try:
        number = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a decimal amount: {value}") from exc
    if not number.is_finite():
        raise argparse.ArgumentTypeError(f"not a finite amount: {value}")
    return number


def cmd_score(args: argparse.Namespace) -> int:
    """Score a metrics JSON file: {"operator_id", "period", "frequency", "values"}."""
    with Path(args.metrics).open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    missing = [key for key in ("period", "values") if key not in data]
    if missing:
        raise ValueError(f"Metrics file missing: {', '.join(missing)}")
    frequency = ScoringFrequency(data.get("frequency", "monthly"))
    period_bounds(data["period"], frequency)
    metric_set = MetricSet(
        operator_id=data.get("operator_id", "unknown"),
        period=data["period"],
        frequency=frequency,
        values=data["values"],
    )
    score = ScoreCalculator(_resolver(args)).calculate(metric_set)
    print(json.dumps({
        "operator_id": score.operator_id,
        "period": score.period,
        "frequency": score.frequency.value,
        "categories": {c.value: s for c, s in score.category_scores.items()},
        "total_score": score.total_score,
        "base_tier": score.tier.value,
    }, indent=2))
    return 0


def cmd_commission(args: argparse.Namespace) -> int:
    calculator = CommissionCalculator(_resolver(args))
    on = date.fromisoformat(args.date) if args.date else None
    quote = calculator.calculate(CommissionTier(args.tier), args.fare, args.bonus, on=on)
    print(json.dumps({
        "tier": quote.tier.value,
        "commission_amount": str(quote.commission_amount),
        **quote.details(),
    }, indent=2))
    return 0


def cmd_withholding(args: argparse.Namespace) -> int:
    rule = WithholdingTaxRule(_resolver(args))
    withheld = rule.compute(args.gross, args.operator_type)
    print(json.dumps({
        "gross": str(args.gross),
        "operator_type": args.operator_type,
        "rate_percentage": str(rule.rate_for(args.operator_type)),
        "tax_withheld": str(withheld),
    }, indent=2))
    return 0


def cmd_balance(args: argparse.Namespace) -> int:
    path = Path(args.data) / "ledger.jsonl"
    ledger = TransactionLedger(store=LedgerStore(path))
    transactions = ledger.transactions(args.operator)
    print(json.dumps({
        "operator_id": args.operator,
        "balance": str(ledger.balance(args.operator)),
        "transaction_count": len(transactions),
    }, indent=2))
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    errors = check_policy(_resolver(args))
    if errors:
        print("Policy check failed:")
        for err in errors:
            print(f"- {err}")
        return 1
    print("Policy check passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="operator-finance",
        description="Operator finance core CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.getenv(CONFIG_ENV, str(DEFAULT_CONFIG))),
        help=f"Path to config directory (default: ${CONFIG_ENV} or config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(os.getenv(DATA_ENV, str(DEFAULT_DATA))),
        help=f"Path to data directory (default: ${DATA_ENV} or data/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    # score
    p_score = sub.add_parser("score", help="Score a metrics JSON file")
    p_score.add_argument("--metrics", required=True, help="Path to metrics JSON")

    # commission
    p_comm = sub.add_parser("commission", help="Quote the commission for a fare")
    p_comm.add_argument(
        "--tier", required=True, choices=[t.value for t in CommissionTier],
    )
    p_comm.add_argument("--fare", required=True, type=_decimal, help="Base fare (PHP)")
    p_comm.add_argument("--bonus", type=_decimal, help="Bonus percentage")
    p_comm.add_argument("--date", help="Rate config date, YYYY-MM-DD (default: today)")

    # withholding
    p_wht = sub.add_parser("withholding", help="Compute withholding tax")
    p_wht.add_argument("--gross", required=True, type=_decimal, help="Gross amount (PHP)")
    p_wht.add_argument("--operator-type", default="general", help="tnvs, general or fleet")

    # balance
    p_bal = sub.add_parser("balance", help="Wallet balance from the durable ledger")
    p_bal.add_argument("--operator", required=True, help="Operator ID")

    # check-config
    sub.add_parser("check-config", help="Run policy invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "score": cmd_score,
        "commission": cmd_commission,
        "withholding": cmd_withholding,
        "balance": cmd_balance,
        "check-config": cmd_check_config,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (OperatorFinanceError, OSError, ValueError, KeyError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
