import os
import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

import psycopg
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from app.models.work_token_sequence import WorkTokenSequence
from app.services.work_tokens import next_work_token, parse_work_token


class ConcurrentTokenTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        db_url_raw = os.getenv("DATABASE_URL", "")
        if not db_url_raw.startswith("postgresql"):
            raise unittest.SkipTest("Concurrent token test requires PostgreSQL DATABASE_URL")

        base_url = make_url(db_url_raw)
        cls.test_db_name = f"{base_url.database}_token_test"
        cls.admin_url = base_url.set(database="postgres")
        cls._recreate_database(create=True)

        cls.engine = create_engine(base_url.set(database=cls.test_db_name), pool_size=4)
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        WorkTokenSequence.__table__.create(bind=cls.engine)

    @classmethod
    def tearDownClass(cls):
        if hasattr(cls, "engine"):
            cls.engine.dispose()
        if hasattr(cls, "admin_url"):
            cls._recreate_database(create=False)

    @classmethod
    def _recreate_database(cls, *, create: bool):
        dsn = cls.admin_url.render_as_string(hide_password=False).replace("+psycopg", "")
        with psycopg.connect(dsn, autocommit=True) as conn:
            conn.execute(
                "SELECT pg_terminate_backend(pid) "
                "FROM pg_stat_activity "
                "WHERE datname = %s AND pid <> pg_backend_pid()",
                (cls.test_db_name,),
            )
            conn.execute(f'DROP DATABASE IF EXISTS "{cls.test_db_name}"')
            if create:
                conn.execute(f'CREATE DATABASE "{cls.test_db_name}"')

    def _reserve(self, year: int, barrier: threading.Barrier | None = None) -> str:
        with self.SessionLocal() as db:
            if barrier is not None:
                barrier.wait(timeout=10)
            token = next_work_token(db, year=year)
            db.commit()
            return token

    def _sequences(self, tokens):
        return sorted(parse_work_token(token)[1] for token in tokens)

    def test_parallel_creators_get_distinct_consecutive_tokens(self):
        workers = 4
        barrier = threading.Barrier(workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            tokens = list(pool.map(lambda _: self._reserve(2031, barrier), range(workers)))

        self.assertEqual(len(set(tokens)), workers)
        self.assertEqual(self._sequences(tokens), [1, 2, 3, 4])
        with self.SessionLocal() as db:
            self.assertEqual(db.get(WorkTokenSequence, 2031).last_value, workers)

    def test_second_writer_reuses_row_created_by_first(self):
        first = self.SessionLocal()
        try:
            first_token = next_work_token(first, year=2032)
            with ThreadPoolExecutor(max_workers=1) as pool:
                pending = pool.submit(self._reserve, 2032)
                # The second writer blocks on the uncommitted year row.
                time.sleep(0.3)
                self.assertFalse(pending.done())
                first.commit()
                second_token = pending.result(timeout=10)
        finally:
            first.close()

        self.assertEqual(first_token, "REQ-2032-00001")
        self.assertEqual(second_token, "REQ-2032-00002")
        with self.SessionLocal() as db:
            self.assertEqual(db.get(WorkTokenSequence, 2032).last_value, 2)


if __name__ == "__main__":
    unittest.main()
