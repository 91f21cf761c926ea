"""
MONITOR TESTS - Fast, Deterministic, No Network

Run: py tests/test_monitor.py   (or: pytest tests/test_monitor.py)

Check passes over several feeds, acknowledgement, and the full `run`
workflow (report + change log + weekly cleanup) wired through build_context.
"""

import json
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from helpers import (
    check, run_tests, urlset, sitemapindex,
    FakeClock, FakeFetcher, FlakyStore, make_store,
)

from sitemap_relay.context import build_context
from sitemap_relay.errors import ConfigError
from sitemap_relay.feed_store import FEEDS_KEY, LAST_DELIVERED_KEY, feed_key
from sitemap_relay.kv_store import MemoryStore
from sitemap_relay.main import main, run_monitoring
from sitemap_relay.models import ChangeBatch, FeedChange
from sitemap_relay.monitor import Monitor, get_domain
from sitemap_relay.reports import ReportManager

FEED_A = "https://a.example/sitemap.xml"
FEED_B = "https://b.example/sitemap.xml"
FEED_C = "https://c.example/sitemap.xml"

INDEX = "https://d.example/sitemap_index.xml"
POSTS = "https://d.example/posts.xml"
PAGES = "https://d.example/pages.xml"


def page(host, name):
    return f"https://{host}/{name}"


def setup(feeds, pages):
    kv = MemoryStore({FEEDS_KEY: json.dumps(feeds)})
    fetcher = FakeFetcher(pages)
    clock = FakeClock()
    store = make_store(fetcher, kv=kv, clock=clock)
    sleeps = []
    monitor = Monitor(store, feed_delay=2.0, sleep=sleeps.append)
    return monitor, fetcher, clock, sleeps


# =============================================================================
# 1. CHECK PASS
# =============================================================================

def test_check_pass():
    print("\n🔁 CHECK PASS")
    monitor, fetcher, clock, sleeps = setup(
        [FEED_A, FEED_B, FEED_C],
        {
            FEED_A: urlset(page("a.example", "1")),
            FEED_B: "Server Error",
            FEED_C: urlset(page("c.example", "1")),
        },
    )
    fetcher.set(FEED_B, "Server Error", status=500)

    # 1.1 Baseline pass: nothing new, one failure
    batch = monitor.run_check_pass()
    check("All feeds checked", batch.checked == 3, f"{batch.to_dict()}")
    check("Failure counted", batch.errors == 1)
    check("Baseline empty", len(batch) == 0 and batch.total_new_urls == 0)
    check("Paced between feeds", sleeps == [2.0, 2.0], f"{sleeps}")
    check("Batch stamped by clock", batch.started_at == clock())

    # 1.2 Next day: only the changed feed is reported
    clock.advance()
    fetcher.set(FEED_A, urlset(page("a.example", "1"), page("a.example", "2"), page("a.example", "3")))
    batch = monitor.run_check_pass()
    check("One change", len(batch) == 1)
    change = batch.changes[0]
    check("Change url + domain", change.url == FEED_A and change.domain == "a.example")
    check("New URLs", change.new_urls == [page("a.example", "2"), page("a.example", "3")])
    check("Archive key", change.archive_key.endswith("_20261020"), change.archive_key)
    check("Archived content attached", change.sitemap_content == fetcher.pages[FEED_A][1].decode("utf-8"))
    check("Totals", batch.total_new_urls == 2 and batch.errors == 1)
    check("Content excluded from dict", "sitemap_content" not in batch.to_dict()["changes"][0])


def test_exception_does_not_stop_pass():
    print("\n💥 UNEXPECTED EXCEPTION")
    monitor, fetcher, clock, _ = setup(
        [FEED_A, FEED_B],
        {FEED_A: urlset(page("a.example", "1")), FEED_B: urlset(page("b.example", "1"))},
    )
    original = monitor.feed_store.add_feed

    def add_feed(url, force_update=False, **kwargs):
        if url == FEED_A:
            raise RuntimeError("store exploded")
        return original(url, force_update, **kwargs)

    monitor.feed_store.add_feed = add_feed
    batch = monitor.run_check_pass()
    check("Error counted", batch.errors == 1)
    check("Next feed still checked", FEED_B in fetcher.calls and FEED_A not in fetcher.calls)


def test_empty_feed_list():
    print("\n📭 NO FEEDS")
    monitor, fetcher, _, sleeps = setup([], {})
    batch = monitor.run_check_pass()
    check("Empty batch", len(batch) == 0 and batch.checked == 0)
    check("Nothing fetched", fetcher.calls == [] and sleeps == [])


def test_index_children_not_rechecked():
    print("\n🗂  INDEX IN PASS")
    monitor, fetcher, clock, sleeps = setup(
        [INDEX],
        {
            INDEX: sitemapindex(POSTS, PAGES),
            POSTS: urlset(page("d.example", "p1")),
            PAGES: urlset(page("d.example", "about")),
        },
    )
    monitor.run_check_pass()
    check("Children joined list", monitor.feed_store.list_feeds() == [INDEX, POSTS, PAGES])

    clock.advance()
    fetcher.calls.clear()
    sleeps.clear()
    fetcher.set(POSTS, urlset(page("d.example", "p1"), page("d.example", "p2")))
    batch = monitor.run_check_pass()

    check("Each child fetched once", fetcher.calls == [INDEX, POSTS, PAGES], f"{fetcher.calls}")
    check("Only index counted", batch.checked == 1)
    check("No feed pacing needed", sleeps == [])
    check("Change reported under index", len(batch) == 1 and batch.changes[0].url == INDEX)
    check("Children carried", batch.changes[0].child_urls == [POSTS, PAGES])
    check("No archive for index", batch.changes[0].sitemap_content is None)


def test_children_listed_before_index():
    print("\n🗂  CHILDREN BEFORE INDEX")
    monitor, fetcher, clock, _ = setup(
        [],
        {
            INDEX: sitemapindex(POSTS, PAGES),
            POSTS: urlset(page("d.example", "p1")),
            PAGES: urlset(page("d.example", "about")),
        },
    )
    monitor.feed_store.add_feed(INDEX)
    check("Children ahead of index", monitor.feed_store.list_feeds() == [POSTS, PAGES, INDEX])

    clock.advance()
    fetcher.calls.clear()
    fetcher.set(POSTS, urlset(page("d.example", "p1"), page("d.example", "p2")))
    batch = monitor.run_check_pass()

    check("Each URL counted once", batch.total_new_urls == 1, f"{batch.to_dict()}")
    check("Reported under the child", [c.url for c in batch] == [POSTS])
    check("Every feed fetched once", fetcher.calls == [POSTS, PAGES, INDEX], f"{fetcher.calls}")
    check("All three checked", batch.checked == 3 and batch.errors == 0)

    check("Child marked", monitor.acknowledge(batch) == 1)
    check("Same-day rerun empty", monitor.run_check_pass().total_new_urls == 0)


def test_get_domain():
    print("\n🌍 DOMAIN")
    check("Host only", get_domain("https://Sub.Example.com:8080/x?y=1") == "sub.example.com")
    check("No host", get_domain("not a url") == "")


# =============================================================================
# 2. ACKNOWLEDGEMENT
# =============================================================================

def test_acknowledge():
    print("\n✅ ACKNOWLEDGE")
    monitor, fetcher, clock, _ = setup([FEED_A], {FEED_A: urlset(page("a.example", "1"))})
    monitor.run_check_pass()
    clock.advance()
    fetcher.set(FEED_A, urlset(page("a.example", "1"), page("a.example", "2")))

    first = monitor.run_check_pass()
    repeat = monitor.run_check_pass()
    check("Unacknowledged diff repeats same day", len(repeat) == 1 and repeat.changes[0].new_urls == first.changes[0].new_urls)

    check("Marked one feed", monitor.acknowledge(first) == 1)
    after = monitor.run_check_pass()
    check("Acknowledged -> empty", len(after) == 0 and after.skipped == 1)
    check("No refetch", fetcher.calls.count(FEED_A) == 2)


def test_acknowledge_index():
    print("\n✅ ACKNOWLEDGE INDEX")
    monitor, fetcher, clock, _ = setup(
        [INDEX],
        {INDEX: sitemapindex(POSTS), POSTS: urlset(page("d.example", "p1"))},
    )
    monitor.run_check_pass()
    clock.advance()
    fetcher.set(POSTS, urlset(page("d.example", "p1"), page("d.example", "p2")))

    batch = monitor.run_check_pass()
    check("Index change", batch.total_new_urls == 1)
    check("Index and child marked", monitor.acknowledge(batch) == 2)
    check("Nothing pending", len(monitor.run_check_pass()) == 0)


# =============================================================================
# 3. RUN WORKFLOW
# =============================================================================

def make_context(tmp, clock, feeds, pages):
    kv = MemoryStore({FEEDS_KEY: json.dumps(feeds)})
    return build_context(
        {"data_directory": tmp, "log_file": None},
        kv=kv, fetcher=FakeFetcher(pages), clock=clock, sleep=lambda _: None,
    )


def test_run_monitoring():
    print("\n🚀 RUN")
    with tempfile.TemporaryDirectory() as tmp:
        clock = FakeClock()
        ctx = make_context(tmp, clock, [FEED_A], {FEED_A: urlset(page("a.example", "news/one"))})

        baseline = run_monitoring(ctx)
        check("Baseline: no report", len(baseline) == 0 and ctx.reports.list_reports() == [])

        clock.advance()
        ctx.fetcher.set(FEED_A, urlset(page("a.example", "news/one"), page("a.example", "news/tech/two")))
        batch = run_monitoring(ctx)
        reports = ctx.reports.list_reports()
        check("Report saved", len(reports) == 1 and reports[0]["total_new_urls"] == 1)
        check("Report payload", ctx.reports.get_report(reports[0]["id"])["changes"][0]["url"] == FEED_A)

        csv_path = Path(tmp) / "a.example" / "a.example_changes_2026-10.csv"
        check("Change log written", csv_path.exists(), str(csv_path))
        df = ctx.change_log.read_month("a.example", batch.started_at)
        check("One row", len(df) == 1 and df.iloc[0]["loc"] == page("a.example", "news/tech/two"))
        check("Path categorized", df.iloc[0]["section"] == "news" and df.iloc[0]["path_depth"] == 3)

        again = run_monitoring(ctx)
        check("Acknowledged: rerun empty", len(again) == 0)
        check("Still one report", len(ctx.reports.list_reports()) == 1)


def test_report_failure_keeps_changes_pending():
    print("\n💾 REPORT WRITE FAILURE")
    with tempfile.TemporaryDirectory() as tmp:
        clock = FakeClock()
        kv = FlakyStore(fail_put=("report_",))
        kv.put(FEEDS_KEY, json.dumps([FEED_A]))
        ctx = build_context(
            {"data_directory": tmp, "log_file": None},
            kv=kv, fetcher=FakeFetcher({FEED_A: urlset(page("a.example", "one"))}),
            clock=clock, sleep=lambda _: None,
        )
        run_monitoring(ctx)

        clock.advance()
        ctx.fetcher.set(FEED_A, urlset(page("a.example", "one"), page("a.example", "two")))
        batch = run_monitoring(ctx)
        check("Changes detected", batch.total_new_urls == 1)
        check("No report saved", ctx.reports.list_reports() == [])
        check("No change log", not (Path(tmp) / "a.example").exists())
        check("Not acknowledged", kv.get(LAST_DELIVERED_KEY.format(hash=feed_key(FEED_A))) is None)

        again = run_monitoring(ctx)
        check("Rerun still reports the URL", again.total_new_urls == 1, f"{again.to_dict()}")
        check("Same URL", again.changes[0].new_urls == [page("a.example", "two")])


def test_invalid_config_rejected():
    print("\n⚙️  INVALID CONFIG")
    for bad in ({"feed_delay": -1}, {"parser": "html5"}, {"max_retries": "3"}):
        try:
            build_context(bad, kv=MemoryStore(), fetcher=FakeFetcher())
            check(f"Rejected {bad}", False)
        except ConfigError as e:
            check(f"Rejected {bad}", "Invalid configuration" in str(e))


def test_sunday_cleanup():
    print("\n🧹 SUNDAY CLEANUP")
    old = FakeClock(datetime(2026, 8, 1, 9, 0, tzinfo=timezone.utc))

    with tempfile.TemporaryDirectory() as tmp:
        # 3.1 Monday: old report survives
        monday = make_context(tmp, FakeClock(), [], {})
        ReportManager(monday.kv, clock=old).generate_report(_one_change_batch())
        run_monitoring(monday)
        check("Monday keeps reports", len(monday.reports.list_reports()) == 1)

    with tempfile.TemporaryDirectory() as tmp:
        # 3.2 Sunday: expired report removed
        sunday = make_context(tmp, FakeClock(datetime(2026, 10, 25, 6, 0, tzinfo=timezone.utc)), [], {})
        ReportManager(sunday.kv, clock=old).generate_report(_one_change_batch())
        run_monitoring(sunday)
        check("Sunday cleanup", sunday.reports.list_reports() == [])


def _one_change_batch():
    return ChangeBatch(changes=[FeedChange(url=FEED_A, domain="a.example", new_urls=[page("a.example", "x")])])


# =============================================================================
# 4. CLI
# =============================================================================

def test_cli():
    print("\n⌨️  CLI")
    with tempfile.TemporaryDirectory() as tmp:
        cfg = Path(tmp) / "config.json"
        cfg.write_text(json.dumps({"data_directory": tmp, "log_file": None}))
        base = ["--config", str(cfg)]

        check("list", main(base + ["list"]) == 0)
        check("run with no feeds", main(base + ["run"]) == 0)
        check("remove unknown", main(base + ["remove", FEED_A]) == 1)
        check("show missing", main(base + ["show", FEED_A]) == 1)
        check("status", main(base + ["status", FEED_A]) == 0)
        check("reset", main(base + ["reset", FEED_A]) == 0)
        check("reports", main(base + ["reports", "--domain", "a.example"]) == 0)
        check("cleanup-reports", main(base + ["cleanup-reports", "--days", "7"]) == 0)
        check("kv created", (Path(tmp) / "kv").is_dir())

        bad = Path(tmp) / "bad.json"
        bad.write_text(json.dumps({"parser": "html5"}))
        check("Invalid config exits 1", main(["--config", str(bad), "list"]) == 1)


def run_all():
    return run_tests("MONITOR TESTS", [
        test_check_pass,
        test_exception_does_not_stop_pass,
        test_empty_feed_list,
        test_index_children_not_rechecked,
        test_children_listed_before_index,
        test_get_domain,
        test_acknowledge,
        test_acknowledge_index,
        test_run_monitoring,
        test_report_failure_keeps_changes_pending,
        test_invalid_config_rejected,
        test_sunday_cleanup,
        test_cli,
    ])


if __name__ == "__main__":
    sys.exit(0 if run_all() else 1)
