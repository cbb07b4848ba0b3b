import argparse
import sys
from tkeep.common.logger import log
from tkeep.core import config
from tkeep.core.timeline import TimelineOptions
from tkeep.util import format_datetime_iso, format_duration


def _status(tracker, args):
    storage = tracker.storage
    active = tracker.get_active()
    for timer in range(tracker.num_timers):
        marker = "*" if timer == active and not tracker.is_stopped else " "
        time = format_duration(storage.get_current_time(timer))
        description = storage.get_current_description(timer)
        group = storage.get_current_group_name(timer)
        print(f"{marker} {timer:>2} {time:>8}  {description}" + (f"  [{group}]" if group else ""))
    print("stopped" if tracker.is_stopped else f"running: timer {active}")

def _run(tracker, args):
    tracker.storage.run(tracker.check_timer(args.timer))

def _pause(tracker, args):
    tracker.storage.pause(tracker.check_timer(args.timer))

def _pause_all(tracker, args):
    paused = tracker.storage.pause_all()
    print(f"Paused: {', '.join(str(t) for t in paused) or 'nothing was running'}")

def _activate(tracker, args):
    tracker.activate(args.timer)

def _set(tracker, args):
    tracker.set_timer(args.timer, args.time)

def _add(tracker, args):
    if not tracker.add_time(args.timer, args.time):
        print(f"Not added: timer {args.timer} would become negative", file=sys.stderr)
        return 1

def _transfer(tracker, args):
    if not tracker.transfer_time(args.from_timer, args.to_timer, args.time):
        print("Not transferred: a timer would become negative", file=sys.stderr)
        return 1

def _describe(tracker, args):
    tracker.storage.set_description(tracker.check_timer(args.timer), args.text)

def _group(tracker, args):
    tracker.storage.set_group(tracker.check_timer(args.timer), args.name, args.type)

def _watch(tracker, args):
    from tkeep.ui.bridge import watch

    def report(entries):
        for timer, fields in entries:
            time = format_duration(tracker.storage.get_current_time(timer))
            print(f"{timer:>2} {time:>8}  changed: {''.join(sorted(field.value for field in fields))}", flush=True)

    log.info(f"Watching {tracker.storage.path}")
    return watch(tracker.storage, tracker, duration=args.seconds, on_change=report)

def _timeline_options(settings, args):
    options = TimelineOptions.from_dict(settings["timeline"])
    options.cleanup = not args.raw
    return options

def _timeline(tracker, args, settings):
    storage = tracker.storage
    for period in storage.get_timeline(_timeline_options(settings, args)):
        description = storage.get_current_description(period.timer) or f"Timer_{period.timer}"
        print(f"{format_datetime_iso(period.start)} - {format_datetime_iso(period.end)}"
              f" {format_duration(period.duration):>7} {description}")

def _totals(tracker, args, settings):
    storage = tracker.storage
    periods = storage.get_timeline(_timeline_options(settings, args))
    grand_total = 0
    for timer, (total, live) in storage.get_timeline_totals(periods).items():
        description = storage.get_current_description(timer) or f"Timer_{timer}"
        print(f"{timer:>2} {format_duration(total):>8} (timer {format_duration(live)})  {description}")
        grand_total += total
    print(f"Grand total: {format_duration(grand_total)}")

def build_parser():
    parser = argparse.ArgumentParser(prog="tkeep", description="Keep track of the time spent per activity.")
    parser.add_argument("--settings", help="settings file (default: settings.json in the data directory)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="show all timers").set_defaults(func=_status)
    for name, func, text in (("run", _run, "run a timer"), ("pause", _pause, "pause a timer"),
                             ("activate", _activate, "make a timer the active one")):
        p = sub.add_parser(name, help=text)
        p.add_argument("timer", type=int)
        p.set_defaults(func=func)
    sub.add_parser("pause-all", help="pause every running timer").set_defaults(func=_pause_all)

    for name, func, text in (("set", _set, "set a timer to a time"), ("add", _add, "add time to a timer")):
        p = sub.add_parser(name, help=text)
        p.add_argument("timer", type=int)
        p.add_argument("time", help="time expression, e.g. 1:30, 1h30m, -15m")
        p.set_defaults(func=func)

    p = sub.add_parser("transfer", help="move time from one timer to another")
    p.add_argument("from_timer", type=int)
    p.add_argument("to_timer", type=int)
    p.add_argument("time")
    p.set_defaults(func=_transfer)

    p = sub.add_parser("describe", help="set the description of a timer")
    p.add_argument("timer", type=int)
    p.add_argument("text")
    p.set_defaults(func=_describe)

    p = sub.add_parser("group", help="set the group of a timer")
    p.add_argument("timer", type=int)
    p.add_argument("name")
    p.add_argument("type", nargs="?", default="0")
    p.set_defaults(func=_group)

    p = sub.add_parser("watch", help="keep ticking the active timer and print the timers that change")
    p.add_argument("--seconds", type=float, help="stop after this many seconds (default: until Ctrl+C)")
    p.set_defaults(func=_watch)

    for name, func, text in (("timeline", _timeline, "show the timeline"), ("totals", _totals, "show the timeline totals")):
        p = sub.add_parser(name, help=text)
        p.add_argument("--raw", action="store_true", help="no cleanup, only the modifications applied")
        p.set_defaults(func=func, needs_settings=True)
    return parser

def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = config.load_settings(args.settings)
    tracker = config.build_tracker(settings)
    try:
        if getattr(args, "needs_settings", False):
            return args.func(tracker, args, settings) or 0
        return args.func(tracker, args) or 0
    except ValueError as e:
        # Malformed user input, nothing was changed
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        tracker.close()

# Entry point for `python -m tkeep`
def run() -> None:
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        # Full stack trace, always
        log.exception("Uncaught exception in entrypoint, exiting")
        sys.exit(1)

if __name__ == "__main__":
    run()
