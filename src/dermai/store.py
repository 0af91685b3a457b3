"""Persistent store for users, images and detection results."""

import logging
from typing import Dict, List, Optional

from prometheus_client import Counter
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .database import DetectionResult, Image, init_db
from .errors import ConstraintViolation, StoreError
from .models.user import User


logger = logging.getLogger(__name__)

USER_COUNTER = Counter("users_created_total", "Total users created")
IMAGE_COUNTER = Counter("images_stored_total", "Total uploaded images recorded")
RESULT_COUNTER = Counter(
    "detection_results_saved_total", "Total detection results saved"
)

HISTORY_COLUMNS = (
    "id",
    "image_id",
    "user_id",
    "disease",
    "accuracy",
    "medicine",
    "detected_at",
)


def _engine_options(database_url: str) -> Dict[str, object]:
    if not database_url.startswith("sqlite"):
        return {}
    options: Dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # a single shared connection keeps the in-memory database alive
        options["poolclass"] = StaticPool
    return options


class Store:
    """Connection to the relational database.

    Each operation runs in its own session and maps to a single SQL
    statement. Driver failures are rolled back and re-raised as
    :class:`StoreError`; unique key breaches as :class:`ConstraintViolation`.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self.engine = create_engine(database_url, future=True, **_engine_options(database_url))
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )

    def init_schema(self) -> None:
        """Create all tables that do not exist yet."""
        init_db(self.engine)
        logger.info("database tables initialized")

    def close(self) -> None:
        self.engine.dispose()
        logger.info("database connection closed")

    def _handle_store_error(self, session: Session, exc: Exception, message: str) -> None:
        """Rollback the session and raise the matching store error."""
        session.rollback()
        if isinstance(exc, IntegrityError) and "unique" in str(exc.orig).lower():
            logger.info("unique constraint violated: %s", exc.orig)
            raise ConstraintViolation() from exc
        logger.exception("store error: %s", message)
        raise StoreError(message) from exc

    def create_user(self, username: str, email: str, password_hash: str) -> int:
        """Insert a user and return its id."""

        session: Session = self.SessionLocal()
        try:
            user = User(username=username, email=email, password=password_hash)
            session.add(user)
            session.commit()
            USER_COUNTER.inc()
            logger.info("created user id=%s username=%s", user.id, username)
            return user.id
        except SQLAlchemyError as exc:
            self._handle_store_error(session, exc, "Error creating user")
        finally:
            session.close()

    def find_user_by_email(self, email: str) -> Optional[User]:
        session: Session = self.SessionLocal()
        try:
            return session.query(User).filter(User.email == email).first()
        except SQLAlchemyError as exc:
            self._handle_store_error(session, exc, "Database error")
        finally:
            session.close()

    def create_image(
        self,
        user_id: Optional[int],
        filename: str,
        original_filename: str,
        file_path: str,
    ) -> int:
        """Record metadata for a stored blob and return the image id."""

        session: Session = self.SessionLocal()
        try:
            image = Image(
                user_id=user_id,
                filename=filename,
                original_filename=original_filename,
                file_path=file_path,
            )
            session.add(image)
            session.commit()
            IMAGE_COUNTER.inc()
            logger.info("created image id=%s user=%s file=%s", image.id, user_id, filename)
            return image.id
        except SQLAlchemyError as exc:
            self._handle_store_error(session, exc, "Error saving image")
        finally:
            session.close()

    def create_detection_result(
        self,
        image_id: Optional[int],
        user_id: Optional[int],
        disease: str,
        accuracy: float,
        medicine: str,
    ) -> int:
        """Persist a detection result and return its id."""

        session: Session = self.SessionLocal()
        try:
            result = DetectionResult(
                image_id=image_id,
                user_id=user_id,
                disease=disease,
                accuracy=accuracy,
                medicine=medicine,
            )
            session.add(result)
            session.commit()
            RESULT_COUNTER.inc()
            logger.info(
                "created detection result id=%s user=%s image=%s",
                result.id,
                user_id,
                image_id,
            )
            return result.id
        except SQLAlchemyError as exc:
            self._handle_store_error(session, exc, "Error saving detection result")
        finally:
            session.close()

    def list_detection_results_for_user(self, user_id: int) -> List[Dict[str, object]]:
        """Return a user's detection results, newest first.

        Each row holds the detection result columns plus the image's
        ``original_filename`` and ``uploaded_at``. Results without a
        stored image are kept with those two fields set to ``None``.
        """

        session: Session = self.SessionLocal()
        try:
            rows = (
                session.query(
                    DetectionResult,
                    Image.original_filename,
                    Image.uploaded_at,
                )
                .outerjoin(Image, DetectionResult.image_id == Image.id)
                .filter(DetectionResult.user_id == user_id)
                .order_by(DetectionResult.detected_at.desc(), DetectionResult.id.desc())
                .all()
            )
            history: List[Dict[str, object]] = []
            for result, original_filename, uploaded_at in rows:
                item = {column: getattr(result, column) for column in HISTORY_COLUMNS}
                item["original_filename"] = original_filename
                item["uploaded_at"] = uploaded_at
                history.append(item)
            return history
        except SQLAlchemyError as exc:
            self._handle_store_error(session, exc, "Error fetching history")
        finally:
            session.close()
