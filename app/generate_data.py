# app/generate_data.py
import argparse
import csv
import random
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from faker import Faker

HEADERS = ["type", "category", "amount", "description", "date"]

INCOME_CATEGORIES = ["Salary", "Freelance", "Investments", "Gifts"]
EXPENSE_CATEGORIES = ["Food", "Rent", "Transport", "Utilities", "Entertainment", "Healthcare", "Shopping"]


def generate_transactions(
    rows: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    seed: Optional[int] = None,
) -> Iterator[Dict[str, object]]:
    """Yields dummy transactions in the CSV import format, roughly one income per four expenses."""
    fake = Faker()
    rng = random.Random(seed)  # nosec B311
    if seed is not None:
        fake.seed_instance(seed)

    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=365)

    for _ in range(rows):
        if rng.random() < 0.2:
            txn_type = "income"
            category = rng.choice(INCOME_CATEGORIES)
            amount = round(rng.uniform(500.0, 5000.0), 2)
        else:
            txn_type = "expense"
            category = rng.choice(EXPENSE_CATEGORIES)
            amount = round(rng.uniform(5.0, 500.0), 2)
        yield {
            "type": txn_type,
            "category": category,
            "amount": amount,
            "description": fake.sentence(nb_words=4).rstrip("."),
            "date": fake.date_between(start_date=start_date, end_date=end_date).isoformat(),
        }


def write_csv(path: Path, transactions) -> int:
    count = 0
    with path.open(mode="w", newline="") as file:
        writer = csv.DictWriter(file, fieldnames=HEADERS)
        writer.writeheader()
        for row in transactions:
            writer.writerow(row)
            count += 1
    return count


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Generate dummy transactions for the CSV upload endpoint.")
    parser.add_argument("--rows", type=int, default=1000, help="Number of rows to generate")
    parser.add_argument("--output", type=Path, default=Path("dummy_transactions.csv"), help="Output CSV path")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible output")
    args = parser.parse_args(argv)

    written = write_csv(args.output, generate_transactions(args.rows, seed=args.seed))
    print(f"Wrote {written} rows to {args.output}")


if __name__ == "__main__":
    main()
