"""Database seeder: users, published articles and comments for local testing."""
import asyncio
import argparse
import random
import time
from datetime import datetime, timezone, timedelta

from sqlalchemy import select

from app.database import engine, async_session, Base
from app.models import User, Article, Comment
from app.services.user_service import hash_password

TOPICS = ["python", "fastapi", "postgresql", "redis", "docker", "caching",
          "images", "webp", "testing", "performance", "café", "crème brûlée"]


async def seed(small: bool = False):
    num_users = 5 if small else 50
    num_articles = 50 if small else 5000
    max_comments_per_article = 2 if small else 5

    print(f"Seeding: {num_users} users, {num_articles} articles, "
          f"up to {num_articles * max_comments_per_article} comments")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # bcrypt is slow on purpose; every seeded user shares one hash.
    password_hash = hash_password("password")

    async with async_session() as session:
        users = [
            User(name=f"User {i}", email=f"user_{i:04d}@example.com", password_hash=password_hash)
            for i in range(num_users)
        ]
        session.add_all(users)
        await session.flush()
        print(f"  Created {len(users)} users")

        batch_size = 500
        total_comments = 0
        now = datetime.now(timezone.utc)
        for batch_start in range(0, num_articles, batch_size):
            batch_end = min(batch_start + batch_size, num_articles)
            for i in range(batch_start, batch_end):
                topic = random.choice(TOPICS)
                published = now - timedelta(minutes=random.randint(0, 365 * 24 * 60))
                session.add(Article(
                    title=f"Article {i}: notes on {topic}",
                    content=f"This is the full content of article {i} about {topic}. " * 20,
                    author_id=random.choice(users).id,
                    published_at=published,
                    created_at=published,
                ))
            await session.flush()

            result = await session.execute(
                select(Article.id).order_by(Article.id.desc()).limit(batch_end - batch_start)
            )
            for article_id in result.scalars().all():
                for _ in range(random.randint(0, max_comments_per_article)):
                    session.add(Comment(
                        content="Great article! Very helpful for understanding the topic.",
                        article_id=article_id,
                        user_id=random.choice(users).id,
                    ))
                    total_comments += 1
            await session.flush()

            print(f"  Batch {batch_start}-{batch_end}: articles created")

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Users: {num_users}")
    print(f"  Articles: {num_articles}")
    print(f"  Comments: {total_comments}")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (50 articles)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
