"""
Repair group lessons in place.

Links stray lessons to their group, aligns the status of every occurrence
and fills in missing lessons for current members. Safe to run repeatedly.

    python backfill_group_lessons.py
"""

import logging
import os
import sys

from config import Config

logger = logging.getLogger('backfill_group_lessons')


def main():
    logging.basicConfig(
        level=Config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    if not (Config.GOOGLE_APPLICATION_CREDENTIALS or Config.FIREBASE_PROJECT_ID
            or os.environ.get('FIRESTORE_EMULATOR_HOST')):
        logger.error('No Firestore configured: set GOOGLE_APPLICATION_CREDENTIALS '
                     'or FIREBASE_PROJECT_ID.')
        return 1

    from app.errors import StudioError
    from app.firebase_init import init_firebase
    from app.services.backfill import run_backfill
    from google.api_core.exceptions import GoogleAPICallError, RetryError

    try:
        init_firebase({'FIREBASE_PROJECT_ID': Config.FIREBASE_PROJECT_ID})
        report = run_backfill()
    except (StudioError, GoogleAPICallError, RetryError):
        logger.exception('Backfill failed')
        return 1

    logger.info('Lessons linked to a group: %d', report.linked)
    logger.info('Lessons with status aligned: %d', report.status_aligned)
    logger.info('Lessons created for missing members: %d', report.created)
    return 0


if __name__ == '__main__':
    sys.exit(main())
