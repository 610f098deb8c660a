"""Seed a development educator payout account. Run with: python -m scripts.seed"""
import asyncio

from sqlalchemy import select

from coursepay.accounts.models import StripeAccount
from coursepay.db.session import async_session_factory

DEV_ACCOUNTS = [
    # (educator id, email, connected account id)
    ("educator_1", "educator1@example.com", "acct_dev_educator_1"),
    ("educator_2", "educator2@example.com", "acct_dev_educator_2"),
]


async def main() -> None:
    async with async_session_factory() as db:
        for educator_id, email, account_id in DEV_ACCOUNTS:
            result = await db.execute(
                select(StripeAccount).where(StripeAccount.educator_id == educator_id)
            )
            if result.scalar_one_or_none() is None:
                db.add(StripeAccount(educator_id=educator_id, email=email, stripe_account_id=account_id))
                print(f"  Added {educator_id} -> {account_id}")
            else:
                print(f"  Exists {educator_id}")
        await db.commit()
    print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(main())
