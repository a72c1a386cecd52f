import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from lonetown.config import DATABASE_URL
from lonetown.database import init_schema, make_engine, make_session_factory
from lonetown.logging_config import configure_logging
from lonetown.repo import SqlRepository
from lonetown.services.seeding import seed_dummy_profiles


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed dummy matching profiles")
    parser.add_argument("--n-users", type=int, default=100)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--clustered", action="store_true")
    parser.add_argument("--id-prefix", type=str, default="seed")
    parser.add_argument("--database-url", type=str, default=DATABASE_URL)
    args = parser.parse_args()

    configure_logging()
    engine = make_engine(args.database_url)
    init_schema(engine)
    repo = SqlRepository(make_session_factory(engine))
    summary = seed_dummy_profiles(
        repo,
        n_users=args.n_users,
        seed=args.seed,
        clustered=args.clustered,
        id_prefix=args.id_prefix.strip() or "seed",
    )

    print("Seed completed")
    for k, v in summary.items():
        print(f"- {k}: {v}")


if __name__ == "__main__":
    main()
