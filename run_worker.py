"""Run the approval escalation sweep as a standalone process."""

import logging
import time

from app.services.escalation_worker import escalation_worker


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    escalation_worker.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        escalation_worker.stop()


if __name__ == "__main__":
    main()
