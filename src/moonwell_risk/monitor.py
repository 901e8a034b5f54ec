"""Background health factor monitor."""

import logging
import threading
from collections.abc import Callable
from decimal import Decimal

from moonwell_risk.core.health import classify_risk, is_below_alert, risk_suggestions
from moonwell_risk.core.models import UserPosition
from moonwell_risk.engine import MoonwellRiskEngine
from moonwell_risk.errors import MoonwellError

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Periodically re-reads the account position and warns below the alert threshold.

    Positions younger than ``max_age`` are served from the engine's cache, so
    the monitor does not add chain load on top of regular reads. A failed
    check is logged and retried on the next tick.

    Parameters
    ----------
    engine : MoonwellRiskEngine
        Engine with a connected wallet
    interval : float | None
        Seconds between checks (engine settings if None)
    alert_threshold : Decimal | None
        Health factor that triggers a warning (engine settings if None)
    max_age : float | None
        Accepted position age in seconds (engine settings if None)
    on_alert : Callable[[UserPosition], None] | None
        Called with the position whenever it is below the threshold

    """

    def __init__(
        self,
        engine: MoonwellRiskEngine,
        interval: float | None = None,
        alert_threshold: Decimal | None = None,
        max_age: float | None = None,
        on_alert: Callable[[UserPosition], None] | None = None,
    ) -> None:
        settings = engine.settings
        self.engine = engine
        self.interval = interval if interval is not None else settings.monitor_interval
        self.alert_threshold = alert_threshold if alert_threshold is not None else settings.health_factor_alert
        self.max_age = max_age if max_age is not None else settings.monitor_cache_ttl
        self.on_alert = on_alert
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def check_once(self) -> UserPosition:
        """
        Run one health check.

        Returns
        -------
        UserPosition
            Position the check was made against

        Raises
        ------
        MoonwellError
            If the position could not be read

        """
        position = self.engine.get_user_position(max_age=self.max_age)
        if is_below_alert(position.health_factor, self.alert_threshold):
            logger.warning(
                "Health factor %s is below alert threshold %s (%s risk). %s",
                position.health_factor,
                self.alert_threshold,
                classify_risk(position.health_factor),
                " ".join(risk_suggestions(position.health_factor)),
            )
            if self.on_alert is not None:
                self.on_alert(position)
        else:
            logger.debug("Health factor %s is healthy", position.health_factor)

        if self.engine.assets:
            self.engine.get_market_data()
        return position

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.check_once()
            except MoonwellError as e:
                logger.error("Health check failed: %s", e.message)
            except Exception:
                logger.exception("Health check failed")
            self._stop.wait(self.interval)

    def start(self) -> bool:
        """
        Start monitoring in a daemon thread.

        Returns
        -------
        bool
            False when the engine is read-only or the monitor already runs

        """
        if self.engine.read_only:
            logger.info("Health monitoring disabled: no wallet connected")
            return False
        if self.running:
            return False

        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="health-monitor", daemon=True)
        self._thread.start()
        logger.info("Health monitor started (every %.0fs, alert below %s)", self.interval, self.alert_threshold)
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the monitor thread to stop and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Health monitor stopped")
