"""SQLAlchemy ORM models for the KvK DKP tracker.

Tables:
- players: one row per governor, keyed by the in-game ID
- scan_runs: one row per successful scan pass
- stat_snapshots: immutable per-run metrics, ordered by run ID
- latest_snapshots: the newest snapshot per player, overwritten on each scan
- competition_periods: KvK periods; at most one has no ``ended_at``
- weight_configs: DKP weights per period
- goals: per (period, player) baseline snapshot and derived targets

Progress is not stored; ``ledger.compute_progress`` derives it at read time.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
AutoId = BigInteger().with_variant(Integer, "sqlite")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Player(Base):
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[Optional[str]] = mapped_column(String(64))


class ScanRun(Base):
    __tablename__ = "scan_runs"

    id: Mapped[int] = mapped_column(AutoId, primary_key=True, autoincrement=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class StatSnapshot(Base):
    __tablename__ = "stat_snapshots"
    __table_args__ = (Index("idx_stat_snapshots_player", "player_id"),)

    run_id: Mapped[int] = mapped_column(
        ForeignKey("scan_runs.id", ondelete="CASCADE"), primary_key=True
    )
    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), primary_key=True
    )
    power: Mapped[int] = mapped_column(BigInteger, default=0)
    kill_points: Mapped[int] = mapped_column(BigInteger, default=0)
    dead: Mapped[int] = mapped_column(BigInteger, default=0)
    t1: Mapped[int] = mapped_column(BigInteger, default=0)
    t2: Mapped[int] = mapped_column(BigInteger, default=0)
    t3: Mapped[int] = mapped_column(BigInteger, default=0)
    t4: Mapped[int] = mapped_column(BigInteger, default=0)
    t5: Mapped[int] = mapped_column(BigInteger, default=0)


class LatestSnapshot(Base):
    __tablename__ = "latest_snapshots"
    __table_args__ = (Index("idx_latest_snapshots_updated", "updated_at"),)

    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(64))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    power: Mapped[int] = mapped_column(BigInteger, default=0)
    kill_points: Mapped[int] = mapped_column(BigInteger, default=0)
    dead: Mapped[int] = mapped_column(BigInteger, default=0)
    t1: Mapped[int] = mapped_column(BigInteger, default=0)
    t2: Mapped[int] = mapped_column(BigInteger, default=0)
    t3: Mapped[int] = mapped_column(BigInteger, default=0)
    t4: Mapped[int] = mapped_column(BigInteger, default=0)
    t5: Mapped[int] = mapped_column(BigInteger, default=0)


class CompetitionPeriod(Base):
    __tablename__ = "competition_periods"

    id: Mapped[int] = mapped_column(AutoId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class WeightConfig(Base):
    __tablename__ = "weight_configs"

    period_id: Mapped[int] = mapped_column(
        ForeignKey("competition_periods.id", ondelete="CASCADE"), primary_key=True
    )
    kp_weight: Mapped[float] = mapped_column(Float, default=1.0)
    dead_weight: Mapped[float] = mapped_column(Float, default=5.0)


class Goal(Base):
    __tablename__ = "goals"
    __table_args__ = (Index("idx_goals_player", "player_id"),)

    period_id: Mapped[int] = mapped_column(
        ForeignKey("competition_periods.id", ondelete="CASCADE"), primary_key=True
    )
    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), primary_key=True
    )
    target_kill_points: Mapped[int] = mapped_column(BigInteger)
    target_dead: Mapped[int] = mapped_column(BigInteger)
    target_dkp: Mapped[int] = mapped_column(BigInteger)

    # Baseline snapshot at goal creation; never updated.
    start_power: Mapped[int] = mapped_column(BigInteger)
    start_kill_points: Mapped[int] = mapped_column(BigInteger)
    start_dead: Mapped[int] = mapped_column(BigInteger)
    start_t1: Mapped[int] = mapped_column(BigInteger)
    start_t2: Mapped[int] = mapped_column(BigInteger)
    start_t3: Mapped[int] = mapped_column(BigInteger)
    start_t4: Mapped[int] = mapped_column(BigInteger)
    start_t5: Mapped[int] = mapped_column(BigInteger)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
