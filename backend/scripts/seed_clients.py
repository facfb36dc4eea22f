"""
Seed the client directory with a handful of sample people and companies
for local runs of the matter opening flow.

Usage:
    python scripts/seed_clients.py          # upsert sample clients
    python scripts/seed_clients.py --purge  # remove them again
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from database import get_db_context
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


SAMPLE_CLIENTS = [
    {
        "client_id": "SEED-0001",
        "first_name": "Alice",
        "last_name": "Hartley",
        "email": "alice.hartley@example.com",
        "client_type": "individual",
        "nationality": "British",
        "date_of_birth": "1981-04-12",
        "address": {"house_number": "12", "street": "Church Road", "city": "Brighton", "postcode": "BN1 3AA", "country": "United Kingdom"},
        "verification": {"stage": "complete", "check_result": "passed", "pep_sanctions_result": "passed"},
    },
    {
        "client_id": "SEED-0002",
        "first_name": "Ben",
        "last_name": "Okafor",
        "email": "ben.okafor@example.com",
        "client_type": "individual",
        "nationality": "British",
        "address": {"house_number": "4", "street": "Mill Lane", "city": "Lewes", "postcode": "BN7 2AB", "country": "United Kingdom"},
        "verification": {"stage": "pending"},
    },
    {
        "client_id": "SEED-0003",
        "first_name": "Carla",
        "last_name": "Mendes",
        "email": "carla@mendes-build.example.com",
        "client_type": "company",
        "company_name": "Mendes Build Ltd",
        "company_number": "09876543",
        "company_address": {"street": "Unit 3, Dyke Road", "city": "Hove", "postcode": "BN3 6EF", "country": "United Kingdom"},
        "verification": {"stage": "complete", "check_result": "refer"},
    },
]


async def seed(purge: bool = False):
    async with get_db_context() as db:
        collection = db[config.CLIENTS_COLLECTION]
        ids = [c["client_id"] for c in SAMPLE_CLIENTS]

        if purge:
            result = await collection.delete_many({"client_id": {"$in": ids}})
            logger.info(f"Removed {result.deleted_count} sample clients")
            return

        for client in SAMPLE_CLIENTS:
            await collection.update_one(
                {"client_id": client["client_id"]},
                {"$set": client},
                upsert=True,
            )
        logger.info(f"Upserted {len(SAMPLE_CLIENTS)} sample clients into {config.DB_NAME}.{config.CLIENTS_COLLECTION}")


if __name__ == "__main__":
    asyncio.run(seed(purge="--purge" in sys.argv))
