"""SQLAlchemy ORM models for the ScoreMaster tables the fetcher touches.

ScoreMaster owns the schema; tables without a declared key are mapped on
SQLite's implicit ``rowid``.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class RallyParams(Base):
    __tablename__ = "rallyparams"

    rowid: Mapped[int] = mapped_column("rowid", Integer, primary_key=True)
    rally_title: Mapped[str] = mapped_column("RallyTitle", Text, default="")
    start_time: Mapped[str] = mapped_column("StartTime", Text)
    finish_time: Mapped[str] = mapped_column("FinishTime", Text)
    local_tz: Mapped[str] = mapped_column("LocalTZ", Text)


class Entrant(Base):
    __tablename__ = "entrants"

    entrant_id: Mapped[int] = mapped_column("EntrantID", Integer, primary_key=True)
    rider_name: Mapped[str] = mapped_column("RiderName", Text, default="")
    email: Mapped[str] = mapped_column("Email", Text, default="")
    team_id: Mapped[int] = mapped_column("TeamID", Integer, default=0)


class Bonus(Base):
    __tablename__ = "bonuses"

    bonus_id: Mapped[str] = mapped_column("BonusID", Text, primary_key=True)
    brief_desc: Mapped[str] = mapped_column("BriefDesc", Text, default="")
    points: Mapped[int] = mapped_column("Points", Integer, default=0)


class Claim(Base):
    __tablename__ = "ebclaims"

    rowid: Mapped[int] = mapped_column("rowid", Integer, primary_key=True)
    logged_at: Mapped[str] = mapped_column("LoggedAt", Text)
    date_time: Mapped[str] = mapped_column("DateTime", Text)
    entrant_id: Mapped[int] = mapped_column("EntrantID", Integer)
    bonus_id: Mapped[str] = mapped_column("BonusID", Text)
    odo_reading: Mapped[int] = mapped_column("OdoReading", Integer)
    final_time: Mapped[str] = mapped_column("FinalTime", Text)
    email_id: Mapped[int] = mapped_column("EmailID", Integer)
    claim_hh: Mapped[int] = mapped_column("ClaimHH", Integer)
    claim_mm: Mapped[int] = mapped_column("ClaimMM", Integer)
    claim_time: Mapped[str] = mapped_column("ClaimTime", Text)
    subject: Mapped[str] = mapped_column("Subject", Text)
    extra_field: Mapped[str] = mapped_column("ExtraField", Text, default="")
    strict_ok: Mapped[bool] = mapped_column("StrictOk", Boolean, default=False)
    attachment_time: Mapped[str | None] = mapped_column("AttachmentTime", Text, nullable=True)
    first_time: Mapped[str] = mapped_column("FirstTime", Text)
    photo_id: Mapped[str] = mapped_column("PhotoID", Text, default="")


class Photo(Base):
    __tablename__ = "ebcphotos"

    rowid: Mapped[int] = mapped_column("rowid", Integer, primary_key=True)
    entrant_id: Mapped[int] = mapped_column("EntrantID", Integer)
    bonus_id: Mapped[str] = mapped_column("BonusID", Text)
    email_id: Mapped[int] = mapped_column("EmailID", Integer)
    image: Mapped[str | None] = mapped_column("Image", Text, nullable=True)
