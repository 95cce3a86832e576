# service/med_service.py
# Android background service: keeps dose reminders firing while the app is closed.
import logging

from medtrack.config import load_settings
from medtrack.logs import setup_logging
from medtrack.notify import default_notifier
from medtrack.reminders import ReminderPoller
from medtrack.store import open_store

logger = logging.getLogger("medtrack.service")

def main_loop():
    settings = load_settings()
    setup_logging(settings)
    store = open_store(settings)
    poller = ReminderPoller(store, default_notifier(in_service=True), interval=settings.poll_seconds)
    poller.run_forever()

if __name__ == "__main__":
    main_loop()
