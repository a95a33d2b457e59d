"""RQ worker process for generation jobs and overage metering reports."""

import logging

from rq import Worker

from services.job_queue import GENERATION_QUEUE_NAME, METERING_QUEUE_NAME, get_redis_connection


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    redis_conn = get_redis_connection()
    # Generation first: metering reports are retried and tolerate delay.
    worker = Worker([GENERATION_QUEUE_NAME, METERING_QUEUE_NAME], connection=redis_conn)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
