"""
BoostLedger - Boost and multiplier service for game currencies

Entry point for the application.
"""

import argparse
import logging
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from config import init_config, APP_NAME, APP_VERSION

logger = logging.getLogger(__name__)


def run_demo(app, qt_app: QCoreApplication, boost_seconds: float) -> None:
    """Two friends join, one gets a timed boost, and we watch it run out."""
    app.on_subject_attached("alice")
    app.on_subject_attached("bob")
    app.presence.add_peer("alice", "bob")

    app.accumulator.register_boost("alice", "Cash", "Weekend", 1.0)
    app.accumulator.register_boost("alice", "Cash", "Potion", 0.5, boost_seconds)
    app.currency.award("alice", "Cash", 100)

    breakdown = app.accumulator.explain_multiplier("alice", "Cash")
    print(f"alice Cash multiplier: {breakdown.total:.2f} "
          f"(boosts +{breakdown.boosts:g}, friends +{breakdown.peer_bonus:g}, "
          f"rebirths +{breakdown.rebirth_bonus:g})")

    def after_expiry():
        multiplier = app.accumulator.compute_multiplier("alice", "Cash")
        print(f"alice Cash multiplier after Potion expired: {multiplier:.2f}")
        print(f"alice Cash balance: {app.currency.balance('alice', 'Cash'):.2f}")
        path = app.export_report()
        if path:
            print(f"Report written to {path}")
        qt_app.quit()

    app.event_bus.boost_expired.connect(
        lambda payload: logger.info("Expired: %s", payload["boost_id"])
    )
    QTimer.singleShot(int(boost_seconds * 1000) + 250, after_expiry)


def main(argv=None) -> int:
    """Main entry point for BoostLedger."""
    parser = argparse.ArgumentParser(prog="boostledger", description=APP_NAME)
    parser.add_argument("--demo", action="store_true",
                        help="run a short scripted session and exit")
    parser.add_argument("--boost-seconds", type=float, default=2.0,
                        help="lifetime of the demo's timed boost")
    args = parser.parse_args(argv)

    # Initialize configuration, directories and logging
    init_config()

    qt_app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    qt_app.setApplicationName(APP_NAME)
    qt_app.setApplicationVersion(APP_VERSION)

    from app import BoostLedgerApp
    app = BoostLedgerApp()
    logger.info("%s %s started", APP_NAME, APP_VERSION)

    if args.demo:
        run_demo(app, qt_app, args.boost_seconds)

    # Run event loop
    return qt_app.exec()


if __name__ == "__main__":
    sys.exit(main())
