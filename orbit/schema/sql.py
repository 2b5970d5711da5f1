from __future__ import annotations

import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from orbit.core.database import Base


class ContentArtifactRow(Base):
  __tablename__ = "content_artifacts"

  artifact_id: Mapped[str] = mapped_column(String, primary_key=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  content_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  kind: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  request: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  completed_steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  warnings: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  logs: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  last_error: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  run_id: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
