"""Server database model."""

from sqlalchemy import Column, Integer, String, DateTime
from nasbox.database.database import Base, utcnow


class Server(Base):
    """SMB destination a plan uploads to.

    Only the credential alias is stored here; the password itself lives in the
    credential store.
    """

    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    host = Column(String, nullable=False)
    share_name = Column(String, nullable=False, default="")
    base_path = Column(String, nullable=False, default="")
    domain = Column(String, nullable=False, default="")
    username = Column(String, nullable=False, default="")
    credential_alias = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Last connection test diagnostics
    last_test_status = Column(String, nullable=True)  # SUCCESS or FAILED
    last_test_at = Column(DateTime, nullable=True)
    last_test_latency_ms = Column(Integer, nullable=True)
    last_test_error_category = Column(String, nullable=True)
    last_test_error_message = Column(String, nullable=True)
