import argparse
import logging
import sys
from dotenv import load_dotenv

load_dotenv()

from cradle.configs import LOG_LEVEL
from cradle.core.api import WaitlistAPI
from cradle.core.db import Database
from cradle.core.exceptions import CradleAPIError


def main():
    parser = argparse.ArgumentParser(
        description="Expire unanswered waitlist offers and send expiry reminders")
    parser.add_argument("--skip-reminders", action="store_true",
                        help="Only run the expiration sweep")
    parser.add_argument("--db-uri", default=None, help="Override DB_URI")
    args = parser.parse_args()
    logging.basicConfig(level=LOG_LEVEL.upper())

    db = Database(args.db_uri) if args.db_uri else Database()
    waitlist = WaitlistAPI(db.init())
    try:
        cleanup = waitlist.cleanup_expired_offers()
        print(f"Expired {cleanup.released_count} offers "
              f"({cleanup.follow_on_offers} follow-on offers sent)")
        if not args.skip_reminders:
            reminders = waitlist.send_expiration_reminders()
            print(f"Sent {reminders.reminders_sent} expiry reminders")
    except CradleAPIError as e:
        print(f"Expiration sweep failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
