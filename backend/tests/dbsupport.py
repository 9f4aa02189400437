import os
import shutil
import tempfile
import unittest
import uuid
from decimal import Decimal

from streamledger.core.database import build_engine, build_sessionmaker
from streamledger.models.media import MediaItem
from streamledger.models.registry import create_all
from streamledger.models.stream import Stream, StreamStatus
from streamledger.services.settlement import credit_payment


class DatabaseTestCase(unittest.TestCase):
    """Fresh file-backed SQLite database per test."""

    def setUp(self):
        self._tmpdir = tempfile.mkdtemp(prefix="streamledger-test-")
        self.database_url = "sqlite:///" + os.path.join(self._tmpdir, "ledger.db")
        self.engine = build_engine(self.database_url, lock_timeout_ms=10000)
        create_all(self.engine)
        self.Session = build_sessionmaker(self.engine)
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        shutil.rmtree(self._tmpdir, ignore_errors=True)

    def fund(self, account_id, tokens, db=None):
        db = db or self.db
        return credit_payment(
            db,
            provider_ref=f"test_{uuid.uuid4().hex}",
            account_id=account_id,
            tokens=Decimal(str(tokens)),
            provider="test",
        )

    def add_media(self, owner_id, cost, *, is_public=False, media_id=None, db=None):
        db = db or self.db
        media = MediaItem(
            id=media_id or f"media-{uuid.uuid4().hex[:8]}",
            owner_account_id=owner_id,
            file_name="clip.mp4",
            token_cost=Decimal(str(cost)),
            is_public=is_public,
        )
        db.add(media)
        db.commit()
        return media.id

    def add_stream(self, model_id, *, status=StreamStatus.LIVE, title="Evening show", stream_id=None, db=None):
        db = db or self.db
        stream = Stream(
            id=stream_id or f"stream-{uuid.uuid4().hex[:8]}",
            model_account_id=model_id,
            title=title,
            status=status.value,
        )
        db.add(stream)
        db.commit()
        return stream.id
