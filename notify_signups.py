#!/usr/bin/env python3
"""Send a welcome or reminder mail to everyone on the signup list.

    python notify_signups.py welcome
    python notify_signups.py reminder --all

A signup is marked notified only once its mail was delivered, so a re-run
picks up where a failed one stopped.
"""
import argparse
import asyncio
from typing import Dict

from arenatickets import config
from arenatickets.infra.sql import make_async_engine
from arenatickets.mail import MailDispatcher, new_dispatcher
from arenatickets.model import SignupStore
from arenatickets.tickets.notify import SIGNUP_UPDATES, NotificationComposer


async def send_bulk(
    store: SignupStore,
    composer: NotificationComposer,
    dispatcher: MailDispatcher,
    template: str,
    only_unnotified: bool = True,
    pause: float = 0.1,
) -> Dict[str, int]:
    signups = await (store.unnotified() if only_unnotified else store.all())
    print(f'==> sending {template} to {len(signups)} recipient(s)')

    sent = failed = 0
    for signup in signups:
        message = composer.compose_signup_update(template, signup.email)
        delivery = await dispatcher.send(message)
        if not delivery.delivered:
            failed += 1
            continue
        await store.mark_notified(signup.id)
        sent += 1
        if pause:
            # stay under the SMTP provider's rate limit
            await asyncio.sleep(pause)

    return {"sent": sent, "failed": failed}


async def main(args) -> int:
    engine, SessionAsync = make_async_engine(config.DATABASE_URL)
    dispatcher = new_dispatcher()
    if not dispatcher.configured:
        print('❌ mail is not configured (EMAIL_HOST / EMAIL_USER / EMAIL_PASS)')
        return 1
    try:
        async with SessionAsync() as db:
            result = await send_bulk(
                SignupStore(db),
                NotificationComposer(config.EVENT),
                dispatcher,
                args.template,
                only_unnotified=not args.all,
                pause=args.pause,
            )
    finally:
        await engine.dispose()

    print(f"✅ {result['sent']} sent, {result['failed']} failed")
    return 0 if result["failed"] == 0 else 2


if __name__ == '__main__':
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    ap.add_argument("template", nargs="?", default="welcome",
                    choices=sorted(SIGNUP_UPDATES))
    ap.add_argument("--all", action="store_true",
                    help="include signups already notified")
    ap.add_argument("--pause", type=float, default=0.1,
                    help="seconds between mails")
    args = ap.parse_args()

    config.configure_logging()
    raise SystemExit(asyncio.run(main(args)))
