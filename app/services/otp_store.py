from __future__ import annotations

import dataclasses
import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import OTPCode, OTPPurpose

from .exceptions import OTPConcurrentModification, StorageError
from .one_time_password import OneTimePassword, utcnow

logger = logging.getLogger(__name__)


class OTPStore(Protocol):
    """Persistence boundary for OTP records.

    ``update_attempt_and_used`` is an optimistic write: it only lands when the
    stored attempt count is lower than the new one and, when ``expected_used``
    is given, the stored ``used`` flag still equals it. It never clears
    ``used``. A lost race raises ``OTPConcurrentModification``.
    """

    def save(self, otp: OneTimePassword) -> OneTimePassword:
        ...

    def get_latest(self, subject_id: str, purpose: OTPPurpose) -> OneTimePassword | None:
        ...

    def get_by_id(self, otp_id: str) -> OneTimePassword | None:
        ...

    def update_attempt_and_used(
        self,
        otp_id: str,
        attempt_count: int,
        used: bool,
        *,
        expected_used: bool | None = None,
    ) -> OneTimePassword:
        ...

    def invalidate_pending(self, subject_id: str, purpose: OTPPurpose) -> int:
        ...

    def delete_expired(self, older_than: datetime) -> int:
        ...

    def list_for_subject(
        self,
        subject_id: str,
        purpose: OTPPurpose | None = None,
        limit: int = 50,
    ) -> list[OneTimePassword]:
        ...


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLAlchemyOTPStore:
    def __init__(self, db: Session):
        self.db = db

    def save(self, otp: OneTimePassword) -> OneTimePassword:
        try:
            row = self.db.query(OTPCode).filter(OTPCode.otp_id == otp.id).first()
            if row is None:
                row = OTPCode(otp_id=otp.id, created_at=otp.created_at)
            row.subject_id = otp.subject_id
            row.purpose = otp.purpose.value
            row.code = otp.code
            row.is_used = otp.used
            row.expires_at = otp.expires_at
            row.attempt_count = otp.attempt_count
            row.max_attempts = otp.max_attempts
            row.updated_at = otp.updated_at
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to save OTP {otp.id}") from exc
        return otp

    def get_latest(self, subject_id: str, purpose: OTPPurpose) -> OneTimePassword | None:
        try:
            row = (
                self.db.query(OTPCode)
                .filter(OTPCode.subject_id == subject_id, OTPCode.purpose == OTPPurpose(purpose).value)
                .order_by(OTPCode.created_at.desc(), OTPCode.pk.desc())
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to load latest OTP") from exc
        return self._to_entity(row) if row else None

    def get_by_id(self, otp_id: str) -> OneTimePassword | None:
        try:
            row = self.db.query(OTPCode).filter(OTPCode.otp_id == otp_id).populate_existing().first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to load OTP {otp_id}") from exc
        return self._to_entity(row) if row else None

    def update_attempt_and_used(
        self,
        otp_id: str,
        attempt_count: int,
        used: bool,
        *,
        expected_used: bool | None = None,
    ) -> OneTimePassword:
        values: dict = {OTPCode.attempt_count: attempt_count, OTPCode.updated_at: utcnow()}
        if used:
            values[OTPCode.is_used] = True
        query = self.db.query(OTPCode).filter(
            OTPCode.otp_id == otp_id,
            OTPCode.attempt_count < attempt_count,
        )
        if expected_used is not None:
            query = query.filter(OTPCode.is_used.is_(bool(expected_used)))
        try:
            updated = query.update(values, synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to update OTP {otp_id}") from exc

        current = self.get_by_id(otp_id)
        if current is None:
            raise StorageError(f"OTP {otp_id} not found")
        if not updated:
            raise OTPConcurrentModification(
                f"OTP {otp_id} changed concurrently "
                f"(attempt_count={current.attempt_count}, used={current.used})"
            )
        return current

    def invalidate_pending(self, subject_id: str, purpose: OTPPurpose) -> int:
        try:
            count = (
                self.db.query(OTPCode)
                .filter(
                    OTPCode.subject_id == subject_id,
                    OTPCode.purpose == OTPPurpose(purpose).value,
                    OTPCode.is_used.is_(False),
                )
                .update({OTPCode.is_used: True, OTPCode.updated_at: utcnow()}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to invalidate pending OTPs") from exc
        return count

    def delete_expired(self, older_than: datetime) -> int:
        try:
            count = (
                self.db.query(OTPCode)
                .filter(OTPCode.expires_at < older_than)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to delete expired OTPs") from exc
        return count

    def list_for_subject(
        self,
        subject_id: str,
        purpose: OTPPurpose | None = None,
        limit: int = 50,
    ) -> list[OneTimePassword]:
        """Newest-first history of a subject's records, for audits."""

        query = self.db.query(OTPCode).filter(OTPCode.subject_id == subject_id)
        if purpose is not None:
            query = query.filter(OTPCode.purpose == OTPPurpose(purpose).value)
        try:
            rows = (
                query.order_by(OTPCode.created_at.desc(), OTPCode.pk.desc())
                .limit(limit)
                .populate_existing()
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to list OTPs for {subject_id}") from exc
        return [self._to_entity(row) for row in rows]

    @staticmethod
    def _to_entity(row: OTPCode) -> OneTimePassword:
        return OneTimePassword(
            id=row.otp_id,
            subject_id=row.subject_id,
            purpose=OTPPurpose(row.purpose),
            code=row.code,
            expires_at=_as_utc(row.expires_at),
            used=bool(row.is_used),
            attempt_count=row.attempt_count or 0,
            max_attempts=row.max_attempts,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )


class InMemoryOTPStore:
    """Process-local store; every read returns a copy."""

    def __init__(self) -> None:
        self._records: dict[str, tuple[int, OneTimePassword]] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def save(self, otp: OneTimePassword) -> OneTimePassword:
        with self._lock:
            existing = self._records.get(otp.id)
            seq = existing[0] if existing else next(self._sequence)
            self._records[otp.id] = (seq, dataclasses.replace(otp))
        return otp

    def get_latest(self, subject_id: str, purpose: OTPPurpose) -> OneTimePassword | None:
        purpose = OTPPurpose(purpose)
        with self._lock:
            matches = [
                (otp.created_at, seq, otp)
                for seq, otp in self._records.values()
                if otp.subject_id == subject_id and otp.purpose == purpose
            ]
            if not matches:
                return None
            _, _, latest = max(matches, key=lambda item: (item[0], item[1]))
            return dataclasses.replace(latest)

    def get_by_id(self, otp_id: str) -> OneTimePassword | None:
        with self._lock:
            entry = self._records.get(otp_id)
            return dataclasses.replace(entry[1]) if entry else None

    def update_attempt_and_used(
        self,
        otp_id: str,
        attempt_count: int,
        used: bool,
        *,
        expected_used: bool | None = None,
    ) -> OneTimePassword:
        with self._lock:
            entry = self._records.get(otp_id)
            if entry is None:
                raise StorageError(f"OTP {otp_id} not found")
            _, stored = entry
            if stored.attempt_count >= attempt_count or (
                expected_used is not None and stored.used != expected_used
            ):
                raise OTPConcurrentModification(
                    f"OTP {otp_id} changed concurrently "
                    f"(attempt_count={stored.attempt_count}, used={stored.used})"
                )
            stored.attempt_count = attempt_count
            stored.used = stored.used or used
            stored.updated_at = utcnow()
            return dataclasses.replace(stored)

    def invalidate_pending(self, subject_id: str, purpose: OTPPurpose) -> int:
        purpose = OTPPurpose(purpose)
        count = 0
        with self._lock:
            for _, otp in self._records.values():
                if otp.subject_id == subject_id and otp.purpose == purpose and not otp.used:
                    otp.used = True
                    otp.updated_at = utcnow()
                    count += 1
        return count

    def delete_expired(self, older_than: datetime) -> int:
        with self._lock:
            expired = [otp_id for otp_id, (_, otp) in self._records.items() if otp.expires_at < older_than]
            for otp_id in expired:
                del self._records[otp_id]
        if expired:
            logger.debug("Deleted %d expired OTPs from memory", len(expired))
        return len(expired)

    def list_for_subject(
        self,
        subject_id: str,
        purpose: OTPPurpose | None = None,
        limit: int = 50,
    ) -> list[OneTimePassword]:
        purpose = OTPPurpose(purpose) if purpose is not None else None
        with self._lock:
            matches = [
                (otp.created_at, seq, dataclasses.replace(otp))
                for seq, otp in self._records.values()
                if otp.subject_id == subject_id and (purpose is None or otp.purpose == purpose)
            ]
        matches.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [otp for _, _, otp in matches[:limit]]
