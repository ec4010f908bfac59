import logging
import time

import schedule

from .config import load_config
from .scheduler import discovery_job, schedule_jobs
from .services import build_services

logger = logging.getLogger(__name__)


def main():
    config = load_config()
    logging.basicConfig(level=config.log_level, format='%(asctime)s - %(levelname)s - %(message)s')

    services = build_services(config)
    schedule_jobs(services)

    logger.info("Agent started.")
    discovery_job(services)

    while True:
        schedule.run_pending()
        time.sleep(1)


if __name__ == "__main__":
    main()
