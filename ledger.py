"""Progress ledger: snapshot persistence, KvK periods, goals and DKP scoring.

All writes go through ``Database.transaction`` so a scan is persisted as a
unit (run, player, snapshot, latest) or not at all. Player and latest rows
are upserts; goals are check-then-insert with ``ON CONFLICT DO NOTHING``,
so two concurrent ``ensure_goal`` calls for the same (period, player) write
at most one row and neither fails.

Scoring::

    target_kill_points = round(2.2 * power)
    target_dead        = round(power / 87)
    target_dkp         = round(kp_weight * target_kill_points + dead_weight * target_dead)

    delta_kill_points  = max(0, latest.kill_points - start_kill_points)
    delta_dead         = max(0, latest.dead - start_dead)
    dkp                = kp_weight * delta_kill_points + dead_weight * delta_dead
    percent            = 0 if target_dkp <= 0 else round(100 * dkp / target_dkp, 1)

All rounding is half-up. Deltas are clamped at zero so that a corrected
(lower) OCR read never takes a player below their baseline.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import String, cast, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from config import (
    DEFAULT_DEAD_WEIGHT,
    DEFAULT_KP_WEIGHT,
    LATEST_LIMIT_MAX,
    TARGET_DEAD_DIVISOR,
    TARGET_KP_FACTOR,
    TOP_LIMIT_DEFAULT,
    TOP_LIMIT_MAX,
)
from database import Database
from exceptions import NoActivePeriod
from models import (
    CompetitionPeriod,
    Goal,
    LatestSnapshot,
    Player,
    ScanRun,
    StatSnapshot,
    WeightConfig,
    utc_now,
)
from parse import PlayerRecord

logger = logging.getLogger(__name__)

WEIGHT_COLUMNS: dict[str, str] = {"kp": "kp_weight", "dead": "dead_weight"}
METRIC_COLUMNS: dict[str, str] = {"kp": "kill_points", "power": "power"}
SNAPSHOT_METRICS: tuple[str, ...] = (
    "power", "kill_points", "dead", "t1", "t2", "t3", "t4", "t5",
)


# ---------------------------------------------------------------------------
# Pure scoring
# ---------------------------------------------------------------------------


def round_half_up(value: float, digits: int = 0) -> float:
    """Round *value* to *digits* places, with ties away from zero."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def compute_targets(
    power: int,
    kp_weight: float,
    dead_weight: float,
    kp_factor: float = TARGET_KP_FACTOR,
    dead_divisor: float = TARGET_DEAD_DIVISOR,
) -> tuple[int, int, int]:
    """Return ``(target_kill_points, target_dead, target_dkp)`` for *power*."""
    target_kill_points = int(round_half_up(kp_factor * power))
    target_dead = int(round_half_up(power / dead_divisor))
    target_dkp = int(round_half_up(kp_weight * target_kill_points + dead_weight * target_dead))
    return target_kill_points, target_dead, target_dkp


def compute_progress(
    kill_points: int,
    dead: int,
    start_kill_points: int,
    start_dead: int,
    kp_weight: float,
    dead_weight: float,
    target_dkp: int,
) -> tuple[int, int, float, float]:
    """Score a player against their baseline.

    Returns:
        ``(delta_kill_points, delta_dead, dkp, percent)``. Deltas are never
        negative, so neither are ``dkp`` and ``percent`` for non-negative
        weights.
    """
    delta_kill_points = max(0, kill_points - start_kill_points)
    delta_dead = max(0, dead - start_dead)
    dkp = kp_weight * delta_kill_points + dead_weight * delta_dead
    if target_dkp <= 0:
        return delta_kill_points, delta_dead, dkp, 0.0
    return delta_kill_points, delta_dead, dkp, round_half_up(100 * dkp / target_dkp, 1)


@dataclass(frozen=True)
class ProgressRecord:
    """A player's DKP progress in one period, derived at read time."""

    period_id: int
    player_id: int
    name: Optional[str]
    updated_at: datetime
    delta_kill_points: int
    delta_dead: int
    kp_weight: float
    dead_weight: float
    dkp: int
    target_kill_points: int
    target_dead: int
    target_dkp: int
    percent: float


@dataclass(frozen=True)
class SnapshotDeltas:
    """Change of every metric between a player's two newest snapshots."""

    power: int
    kill_points: int
    dead: int
    t1: int
    t2: int
    t3: int
    t4: int
    t5: int


@dataclass(frozen=True)
class ScanReport:
    """What ``Ledger.record_scan`` wrote and derived for one record."""

    run_id: int
    player_id: int
    goal_created: bool
    progress: Optional[ProgressRecord]
    deltas: Optional[SnapshotDeltas]


def compute_deltas(latest: Any, previous: Any) -> Optional[SnapshotDeltas]:
    """Difference ``latest - previous`` per metric, or ``None`` if either is missing."""
    if latest is None or previous is None:
        return None
    return SnapshotDeltas(**{
        metric: (getattr(latest, metric) or 0) - (getattr(previous, metric) or 0)
        for metric in SNAPSHOT_METRICS
    })


def _build_progress(
    goal: Goal, latest: LatestSnapshot, weights: WeightConfig, name: Optional[str]
) -> ProgressRecord:
    delta_kill_points, delta_dead, dkp, percent = compute_progress(
        latest.kill_points or 0,
        latest.dead or 0,
        goal.start_kill_points,
        goal.start_dead,
        weights.kp_weight,
        weights.dead_weight,
        goal.target_dkp,
    )
    return ProgressRecord(
        period_id=goal.period_id,
        player_id=goal.player_id,
        name=name,
        updated_at=latest.updated_at,
        delta_kill_points=delta_kill_points,
        delta_dead=delta_dead,
        kp_weight=weights.kp_weight,
        dead_weight=weights.dead_weight,
        dkp=int(round_half_up(dkp)),
        target_kill_points=goal.target_kill_points,
        target_dead=goal.target_dead,
        target_dkp=goal.target_dkp,
        percent=percent,
    )


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Ledger:
    """Persistence and scoring over one ``Database``.

    Args:
        db: An initialized database service.
        default_kp_weight: KP weight of a newly started period.
        default_dead_weight: Dead weight of a newly started period.
    """

    def __init__(
        self,
        db: Database,
        default_kp_weight: float = DEFAULT_KP_WEIGHT,
        default_dead_weight: float = DEFAULT_DEAD_WEIGHT,
    ) -> None:
        self.db = db
        self.default_kp_weight = default_kp_weight
        self.default_dead_weight = default_dead_weight

    def _insert(self, model: type) -> Any:
        """Dialect-specific INSERT supporting ``ON CONFLICT`` clauses."""
        dialect = self.db.dialect
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise RuntimeError(f"Upserts are not supported on '{dialect}'")

    # ------------------------------------------------------------------
    # Periods and weights
    # ------------------------------------------------------------------

    @staticmethod
    def _active_period_id(session: Session) -> Optional[int]:
        return session.scalar(
            select(CompetitionPeriod.id)
            .where(CompetitionPeriod.ended_at.is_(None))
            .order_by(CompetitionPeriod.started_at.desc(), CompetitionPeriod.id.desc())
            .limit(1)
        )

    def active_period_id(self) -> Optional[int]:
        """ID of the active KvK period, or ``None``."""
        with self.db.session() as session:
            return self._active_period_id(session)

    def start_period(self, name: Optional[str] = None) -> int:
        """Start a new KvK period with default weights and return its ID.

        A period that is still active is ended first, so at most one
        period is ever active. The default name is ``"KvK YYYY-MM-DD"``.
        """
        now = utc_now()
        with self.db.transaction() as session:
            closed = session.execute(
                update(CompetitionPeriod)
                .where(CompetitionPeriod.ended_at.is_(None))
                .values(ended_at=now)
            ).rowcount
            if closed:
                logger.info("Ended %d active KvK period(s) before starting a new one", closed)

            period = CompetitionPeriod(name=name or f"KvK {now:%Y-%m-%d}", started_at=now)
            session.add(period)
            session.flush()
            session.add(WeightConfig(
                period_id=period.id,
                kp_weight=self.default_kp_weight,
                dead_weight=self.default_dead_weight,
            ))
            period_id = period.id

        logger.info("Started KvK period %d '%s'", period_id, period.name)
        return period_id

    def end_period(self) -> int:
        """End the active period and return its ID.

        Raises:
            NoActivePeriod: If no period is active.
        """
        with self.db.transaction() as session:
            period_id = self._active_period_id(session)
            if period_id is None:
                raise NoActivePeriod("end_period")
            session.get(CompetitionPeriod, period_id).ended_at = utc_now()
        logger.info("Ended KvK period %d", period_id)
        return period_id

    def set_weight(self, kind: str, value: float) -> int:
        """Set one weight of the active period; returns the period ID.

        Args:
            kind: ``"kp"`` or ``"dead"``.
            value: The new weight.

        Raises:
            ValueError: If *kind* is unknown.
            NoActivePeriod: If no period is active. Nothing is written.
        """
        column = WEIGHT_COLUMNS.get(kind)
        if column is None:
            raise ValueError(f"Unknown weight '{kind}' (use 'kp' or 'dead')")

        with self.db.transaction() as session:
            period_id = self._active_period_id(session)
            if period_id is None:
                raise NoActivePeriod("set_weight")
            weights = session.get(WeightConfig, period_id)
            if weights is None:
                weights = WeightConfig(
                    period_id=period_id,
                    kp_weight=self.default_kp_weight,
                    dead_weight=self.default_dead_weight,
                )
                session.add(weights)
            setattr(weights, column, float(value))

        logger.info("Set %s=%s for KvK period %d", column, value, period_id)
        return period_id

    def weights(self, period_id: Optional[int] = None) -> Optional[WeightConfig]:
        """Weights of *period_id* (default: the active period)."""
        with self.db.session() as session:
            if period_id is None:
                period_id = self._active_period_id(session)
                if period_id is None:
                    return None
            return session.get(WeightConfig, period_id)

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def record_scan(self, record: PlayerRecord) -> ScanReport:
        """Persist one validated scan and derive goal, progress and deltas.

        The run, player, snapshot and latest rows are written in one
        transaction. The latest row is overwritten unconditionally, even if
        a metric went down.
        """
        metrics = record.metrics()
        now = utc_now()
        with self.db.transaction() as session:
            run = ScanRun(started_at=now)
            session.add(run)
            session.flush()
            run_id = run.id

            player = self._insert(Player).values(id=record.player_id, name=record.name)
            session.execute(player.on_conflict_do_update(
                index_elements=["id"], set_={"name": player.excluded.name}
            ))

            session.add(StatSnapshot(run_id=run_id, player_id=record.player_id, **metrics))

            values = {"player_id": record.player_id, "name": record.name, "updated_at": now, **metrics}
            latest = self._insert(LatestSnapshot).values(**values)
            session.execute(latest.on_conflict_do_update(
                index_elements=["player_id"],
                set_={key: latest.excluded[key] for key in values if key != "player_id"},
            ))

        logger.debug("Run %d: stored snapshot for player %d", run_id, record.player_id)
        goal = self.ensure_goal(record.player_id)
        snapshots = self.last_snapshots(record.player_id, 2)
        return ScanReport(
            run_id=run_id,
            player_id=record.player_id,
            goal_created=goal is not None,
            progress=self.progress(record.player_id),
            deltas=compute_deltas(*snapshots) if len(snapshots) == 2 else None,
        )

    # ------------------------------------------------------------------
    # Goals and progress
    # ------------------------------------------------------------------

    def ensure_goal(self, player_id: int) -> Optional[Goal]:
        """Create the player's goal in the active period if it is missing.

        Returns:
            The new goal, or ``None`` when there is no active period, the
            goal already exists, or the player has never been scanned.
        """
        with self.db.transaction() as session:
            period_id = self._active_period_id(session)
            if period_id is None:
                logger.debug("No active KvK period; no goal for player %d", player_id)
                return None
            if session.get(Goal, (period_id, player_id)) is not None:
                return None
            latest = session.get(LatestSnapshot, player_id)
            if latest is None:
                logger.debug("Player %d has no snapshot yet; no goal", player_id)
                return None

            weights = session.get(WeightConfig, period_id)
            kp_weight = weights.kp_weight if weights else self.default_kp_weight
            dead_weight = weights.dead_weight if weights else self.default_dead_weight
            target_kill_points, target_dead, target_dkp = compute_targets(
                latest.power or 0, kp_weight, dead_weight
            )

            stmt = self._insert(Goal).values(
                period_id=period_id,
                player_id=player_id,
                target_kill_points=target_kill_points,
                target_dead=target_dead,
                target_dkp=target_dkp,
                start_power=latest.power or 0,
                start_kill_points=latest.kill_points or 0,
                start_dead=latest.dead or 0,
                start_t1=latest.t1 or 0,
                start_t2=latest.t2 or 0,
                start_t3=latest.t3 or 0,
                start_t4=latest.t4 or 0,
                start_t5=latest.t5 or 0,
                created_at=utc_now(),
            ).on_conflict_do_nothing(index_elements=["period_id", "player_id"])
            if session.execute(stmt).rowcount == 0:
                logger.debug("Goal for player %d was created concurrently", player_id)
                return None
            goal = session.get(Goal, (period_id, player_id))

        logger.info(
            "Goal for player %d in period %d: kp=%d dead=%d dkp=%d",
            player_id, period_id, target_kill_points, target_dead, target_dkp,
        )
        return goal

    def ensure_all_goals(self) -> tuple[int, int]:
        """Ensure a goal for every scanned player.

        Returns:
            ``(made, skipped)`` counts.

        Raises:
            NoActivePeriod: If no period is active. Nothing is written.
        """
        if self.active_period_id() is None:
            raise NoActivePeriod("ensure_all_goals")
        with self.db.session() as session:
            player_ids = session.scalars(
                select(LatestSnapshot.player_id).order_by(LatestSnapshot.player_id)
            ).all()

        made = sum(1 for player_id in player_ids if self.ensure_goal(player_id) is not None)
        skipped = len(player_ids) - made
        logger.info("Ensured goals: %d created, %d skipped", made, skipped)
        return made, skipped

    @staticmethod
    def _progress_query() -> Any:
        return (
            select(Goal, LatestSnapshot, WeightConfig, Player.name)
            .join(LatestSnapshot, LatestSnapshot.player_id == Goal.player_id)
            .join(WeightConfig, WeightConfig.period_id == Goal.period_id)
            .join(Player, Player.id == Goal.player_id)
        )

    def progress(self, player_id: int) -> Optional[ProgressRecord]:
        """Progress against the player's most recent goal, or ``None``."""
        with self.db.session() as session:
            row = session.execute(
                self._progress_query()
                .where(Goal.player_id == player_id)
                .order_by(Goal.period_id.desc())
                .limit(1)
            ).first()
        if row is None:
            return None
        return _build_progress(*row)

    def top(self, n: int = TOP_LIMIT_DEFAULT) -> list[ProgressRecord]:
        """Players ranked by percent of their most recent goal.

        Ties are broken by player ID, ascending. *n* is clamped to
        ``[1, TOP_LIMIT_MAX]``.
        """
        limit = _clamp(n, 1, TOP_LIMIT_MAX)
        newest = (
            select(Goal.player_id, func.max(Goal.period_id).label("period_id"))
            .group_by(Goal.player_id)
            .subquery()
        )
        with self.db.session() as session:
            rows = session.execute(
                self._progress_query().join(
                    newest,
                    (newest.c.player_id == Goal.player_id)
                    & (newest.c.period_id == Goal.period_id),
                )
            ).all()
        records = [_build_progress(*row) for row in rows]
        records.sort(key=lambda record: (-record.percent, record.player_id))
        return records[:limit]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def latest(self, player_id: int) -> Optional[LatestSnapshot]:
        with self.db.session() as session:
            return session.get(LatestSnapshot, player_id)

    def latest_rows(self, limit: int = 200, search: Optional[str] = None) -> list[LatestSnapshot]:
        """Latest snapshots, newest first, optionally filtered by name or ID text."""
        stmt = select(LatestSnapshot)
        term = (search or "").strip()
        if term:
            pattern = f"%{term}%"
            stmt = stmt.where(or_(
                LatestSnapshot.name.ilike(pattern),
                cast(LatestSnapshot.player_id, String).ilike(pattern),
            ))
        stmt = stmt.order_by(
            LatestSnapshot.updated_at.desc(), LatestSnapshot.player_id
        ).limit(_clamp(limit, 1, LATEST_LIMIT_MAX))
        with self.db.session() as session:
            return list(session.scalars(stmt).all())

    def top_by_metric(self, metric: str, n: int = TOP_LIMIT_DEFAULT) -> list[LatestSnapshot]:
        """Latest snapshots ranked by ``"kp"`` or ``"power"``, descending.

        Raises:
            ValueError: If *metric* is unknown.
        """
        column_name = METRIC_COLUMNS.get(metric)
        if column_name is None:
            raise ValueError(f"Unknown metric '{metric}' (use 'kp' or 'power')")
        column = getattr(LatestSnapshot, column_name)
        with self.db.session() as session:
            return list(session.scalars(
                select(LatestSnapshot)
                .order_by(column.desc(), LatestSnapshot.player_id)
                .limit(_clamp(n, 1, TOP_LIMIT_MAX))
            ).all())

    def last_snapshots(self, player_id: int, limit: int = 2) -> Sequence[StatSnapshot]:
        """The player's newest snapshots, newest run first."""
        with self.db.session() as session:
            return list(session.scalars(
                select(StatSnapshot)
                .where(StatSnapshot.player_id == player_id)
                .order_by(StatSnapshot.run_id.desc())
                .limit(max(1, limit))
            ).all())
