import logging
import signal
import sys

from kombu import Connection

from consumer import TrackConsumer
from repo_documents import DocumentRepo
from service_tracking import TrackingService
from settings import settings

logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # One service instance owns every cache for the life of the process.
    svc = TrackingService.build(DocumentRepo(settings), settings)

    with Connection(settings.amqp_url) as conn:
        logger.info("connecting")
        consumer = TrackConsumer(conn, svc, settings)

        def shutdown(signum, frame):
            logger.info(f"received signal {signum}, closing connection")
            consumer.stop()
            svc.stop()

        signal.signal(signal.SIGTERM, shutdown)
        signal.signal(signal.SIGINT, shutdown)

        try:
            consumer.run()
        except Exception:
            logger.exception("consumer stopped on an unexpected error")
            return 1
        finally:
            svc.close()
            logger.info("connection closed")

    return 0


if __name__ == "__main__":
    sys.exit(main())
