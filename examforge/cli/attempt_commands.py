"""
Test inspection, terminal attempt, and grading CLI commands.
"""

import json
import time

from examforge.attempt import PHASE_QUESTION, AttemptStateMachine, format_time
from examforge.cli import load_test_or_report
from examforge.config import make_rng, webhook_settings
from examforge.pass_rules import describe_rule
from examforge.results import aggregate, format_report
from examforge.runtime import ScormRuntimeAdapter, StandaloneChannel
from examforge.variant import full_variant, variant_from_dict


def register_attempt_commands(subparsers):
    """Register attempt-related subcommands."""

    # info
    p = subparsers.add_parser("info", help="Summarize a test definition.")
    p.add_argument("test_file", help="Path to the test definition JSON.")

    # take
    p = subparsers.add_parser("take", help="Take the test interactively in the terminal.")
    p.add_argument("test_file", help="Path to the test definition JSON.")
    p.add_argument("--json", dest="as_json", action="store_true", help="Print the report as JSON.")
    p.add_argument("--no-webhook", action="store_true", help="Do not send the result webhook.")

    # grade
    p = subparsers.add_parser("grade", help="Grade recorded answers against a test.")
    p.add_argument("test_file", help="Path to the test definition JSON.")
    p.add_argument("answers_file", help="Answers JSON: {questionId: answer} or {variant, answers}.")
    p.add_argument("--json", dest="as_json", action="store_true", help="Print the report as JSON.")
    p.add_argument("--show-writes", action="store_true", help="Print the runtime data-model writes.")


# ---------------------------------------------------------------------------
# info
# ---------------------------------------------------------------------------


def handle_info(config, args):
    """Print the test metadata and its sections."""
    test = load_test_or_report(args.test_file)
    if test is None:
        return 1

    print(f"\n{test.title}  (id: {test.id})")
    if test.description:
        print(test.description)
    print("-" * 60)
    print(f"Questions per attempt: {test.total_questions}")
    print(f"Overall pass rule: {describe_rule(test.overall_pass_rule)}  (pass mark {test.pass_percent}%)")
    if test.time_limit_minutes:
        print(f"Time limit: {test.time_limit_minutes} min")
    if test.max_attempts:
        print(f"Max attempts: {test.max_attempts}")
    print(f"Show correct answers: {'yes' if test.show_correct_answers else 'no'}")

    print(f"\n{'Topic':<30} {'Pool':>5} {'Draw':>5}  {'Rule':<12}")
    print(f"{'---':<30} {'---':>5} {'---':>5}  {'---':<12}")
    for s in test.sections:
        name = (s.topic_name or s.topic_id)[:28]
        print(f"{name:<30} {len(s.questions):>5} {s.effective_draw_count:>5}  {describe_rule(s.pass_rule):<12}")
    return 0


# ---------------------------------------------------------------------------
# take
# ---------------------------------------------------------------------------


def _print_notices(machine):
    for notice in machine.drain_notices():
        print(f"[{notice.kind.upper()}] {notice.message}")


def _parse_numbers(raw, upper):
    """Parse '1, 3' into zero-based ints, or None if any entry is out of 1..upper."""
    try:
        numbers = [int(part) for part in raw.replace(" ", "").split(",") if part]
    except ValueError:
        return None
    if not numbers or any(n < 1 or n > upper for n in numbers):
        return None
    return [n - 1 for n in numbers]


def _print_question(view, remaining):
    header = f"\nQuestion {view['index'] + 1} of {view['total']}  [{view['topicName']}]  ({view['points']} pts)"
    if remaining is not None:
        header += f"  time left {format_time(remaining)}"
    print(header)
    print(view["prompt"])
    if view.get("mediaUrl"):
        print(f"  ({view.get('mediaType') or 'media'}: {view['mediaUrl']})")

    if view["type"] in ("single", "multiple"):
        for pos, opt in enumerate(view["options"], start=1):
            print(f"  {pos}. {opt['text']}")
    elif view["type"] == "matching":
        print("  Match each item with one of:")
        for pos, opt in enumerate(view["right"], start=1):
            print(f"    {pos}. {opt['text']}")
    elif view["type"] == "ranking":
        print("  Current order:")
        for pos, item in enumerate(view["items"], start=1):
            print(f"    {pos}. {item['text']}")


def _read_answer(machine, view, input_fn):
    """Prompt for an answer to the displayed question. Returns False on invalid input."""
    qid = view["id"]
    q_type = view["type"]

    if q_type == "single":
        picked = _parse_numbers(input_fn("Your choice: "), len(view["options"]))
        if picked is None or len(picked) != 1:
            print("Enter one option number.")
            return False
        machine.choose_option(qid, picked[0])
    elif q_type == "multiple":
        picked = _parse_numbers(input_fn("Your choices (comma separated): "), len(view["options"]))
        if picked is None:
            print("Enter option numbers separated by commas.")
            return False
        machine.set_answer(qid, sorted({view["options"][p]["index"] for p in picked}))
    elif q_type == "matching":
        for left in view["left"]:
            picked = _parse_numbers(input_fn(f"  {left['text']} -> "), len(view["right"]))
            if picked is None or len(picked) != 1:
                print("Enter one number from the list.")
                return False
            machine.set_match(qid, left["index"], picked[0])
    elif q_type == "ranking":
        raw = input_fn("New order (e.g. 2,1,3) or Enter to keep: ").strip()
        if raw:
            picked = _parse_numbers(raw, len(view["items"]))
            if picked is None or sorted(picked) != list(range(len(view["items"]))):
                print("Enter every position exactly once.")
                return False
            machine.set_answer(qid, [view["items"][p]["index"] for p in picked])
    return True


def handle_take(config, args, input_fn=input, clock=time.monotonic):
    """Run one attempt in the terminal against a standalone runtime."""
    test = load_test_or_report(args.test_file)
    if test is None:
        return 1

    url, timeout = webhook_settings(config, test.webhook_url)
    if getattr(args, "no_webhook", False):
        url = ""
    adapter = ScormRuntimeAdapter(StandaloneChannel(log_writes=config.get("runtime", {}).get("log_writes", True)))
    machine = AttemptStateMachine(test, adapter=adapter, rng=make_rng(config), webhook_url=url, webhook_timeout=timeout)

    print(f"\n{test.title}")
    if test.start_page_content:
        print(test.start_page_content)
    machine.start()
    _print_notices(machine)

    last = [clock()]

    def catch_up():
        elapsed = int(clock() - last[0])
        if elapsed > 0:
            machine.tick(elapsed)
            last[0] += elapsed

    try:
        while machine.state.phase == PHASE_QUESTION:
            catch_up()
            if machine.state.phase != PHASE_QUESTION:
                break
            view = machine.question_view()
            _print_question(view, machine.state.remaining_seconds)
            if not _read_answer(machine, view, input_fn):
                continue
            catch_up()

            if test.show_correct_answers:
                machine.confirm()
                fb = machine.question_view(view["index"]).get("feedback")
                if fb:
                    print(f"  -> {fb['outcome']}")
                    if fb["text"]:
                        print(f"     {fb['text']}")

            if machine.state.is_last:
                machine.submit()
            else:
                machine.next()
            _print_notices(machine)
    except (EOFError, KeyboardInterrupt):
        print("\nAttempt abandoned.")
        return 1

    _print_notices(machine)
    report = machine.state.report
    if report is None:
        return 1
    if getattr(args, "as_json", False):
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print()
        print(format_report(report, test))
    # the process exits after this; give the webhook its timeout to finish
    machine.wait_for_delivery(timeout)
    return 0


# ---------------------------------------------------------------------------
# grade
# ---------------------------------------------------------------------------


def handle_grade(config, args):
    """Grade a recorded answers file and print the report."""
    test = load_test_or_report(args.test_file)
    if test is None:
        return 1

    try:
        with open(args.answers_file, encoding="utf-8") as f:
            recorded = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: Could not read answers file {args.answers_file}: {e}")
        return 1
    if not isinstance(recorded, dict):
        print("Error: Answers file must contain a JSON object.")
        return 1

    if isinstance(recorded.get("answers"), dict):
        answers = recorded["answers"]
        if isinstance(recorded.get("variant"), dict):
            variant = variant_from_dict(test, recorded["variant"])
        else:
            variant = full_variant(test)
    else:
        answers = recorded
        variant = full_variant(test)

    report = aggregate(test, variant, answers)

    if getattr(args, "as_json", False):
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(format_report(report, test))

    if getattr(args, "show_writes", False):
        channel = StandaloneChannel(log_writes=False)
        ScormRuntimeAdapter(channel).finish(report, variant, answers)
        print("\nRuntime writes:")
        for key, value in channel.values.items():
            print(f"  {key} = {value}")
    return 0
