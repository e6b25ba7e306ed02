from __future__ import annotations
import argparse, random, sys, time

import structlog

from app.logging_config import configure_logging
from app.analytics.config import WindowConfig
from app.controller.lifecycle import OrderConflict
from app.controller.runner import FeedRuntime
from core.orders.model import OrderStatus, DeliveryAddress
from core.store.order_store import SqliteOrderStore, InMemoryOrderStore

log = structlog.get_logger()


def _window_from_args(args) -> WindowConfig:
    return WindowConfig(window_ms=args.window_ms, bucket_ms=args.bucket_ms, tick_interval_ms=args.tick_ms)


def run_demo(args) -> int:
    rng = random.Random(args.seed)
    store = SqliteOrderStore(args.db) if args.db else InMemoryOrderStore()
    with FeedRuntime(store=store, window=_window_from_args(args)) as rt:
        sessions = [rt.connect() for _ in range(args.sessions)]
        created = []
        deadline = time.monotonic() + args.duration
        n = 0
        while time.monotonic() < deadline:
            n += 1
            try:
                order = rt.lifecycle.create(
                    f"{args.prefix}-{n}",
                    description=f"demo order {n}",
                    value=round(rng.uniform(5, 500), 2),
                    address=DeliveryAddress(cep="01001-000", street="Praca da Se", number=str(n), city="Sao Paulo", state="SP"),
                    owner_id="demo",
                )
                created.append(order.id)
            except OrderConflict as e:
                log.info("demo.create.conflict", order_number=e.order_number)
            if created and rng.random() < args.deliver_prob:
                oid = rng.choice(created)
                rt.lifecycle.set_status(oid, rng.choice([OrderStatus.DELIVERED, OrderStatus.DELIVERED, OrderStatus.NEW]))
            time.sleep(1.0 / args.rate)

        # one more tick so the last events are in the frame
        time.sleep(args.tick_ms / 1000.0 + 0.1)
        frame = sessions[0].frame or sessions[0].tick()

        totals = frame.snapshot.totals()
        print("=== Demo Summary ===")
        print(f"Subscribers         : {len(sessions)}")
        print(f"Events published    : {rt.broadcaster.published}")
        print(f"Deliveries          : {rt.broadcaster.delivered}")
        print(f"Window              : {frame.time_range}")
        for kind, total in totals.items():
            print(f"  {kind:<18}: {total}")
        print(f"Y axis max          : {frame.y_max:g}")

        if args.out:
            from ui.live_chart import LiveChart
            chart = LiveChart()
            chart.render(frame)
            chart.save_png(args.out)
            print(f"\nChart written to: {args.out}")
    return 0


def list_orders(args) -> int:
    store = SqliteOrderStore(args.db)
    orders = store.list_all()
    if not orders:
        print("No orders.")
        return 0
    for o in orders:
        print(f"{o.order_number:<16} {o.status.value:<10} {str(o.value):>10}  {o.created_at.isoformat(timespec='seconds')}  {o.id}")
    return 0


def main(argv=None):
    ap = argparse.ArgumentParser(prog="orderfeed", description="Order event feed")
    ap.add_argument("-v", "--verbose", action="store_true")
    ap.add_argument("--plain-logs", action="store_true", help="console log lines instead of JSON")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_demo = sub.add_parser("demo", help="Simulate orders and live subscribers")
    p_demo.add_argument("--sessions", type=int, default=3)
    p_demo.add_argument("--duration", type=float, default=10.0, help="seconds")
    p_demo.add_argument("--rate", type=float, default=2.0, help="orders per second")
    p_demo.add_argument("--deliver-prob", type=float, default=0.5)
    p_demo.add_argument("--prefix", default="ORD")
    p_demo.add_argument("--seed", type=int)
    p_demo.add_argument("--db", help="sqlite file (default: in-memory store)")
    p_demo.add_argument("--window-ms", type=int, default=WindowConfig.window_ms)
    p_demo.add_argument("--bucket-ms", type=int, default=WindowConfig.bucket_ms)
    p_demo.add_argument("--tick-ms", type=int, default=WindowConfig.tick_interval_ms)
    p_demo.add_argument("--out", default="orders_chart.png", help="PNG path ('' to skip)")

    p_orders = sub.add_parser("orders", help="List orders in a sqlite store")
    p_orders.add_argument("--db", default="orders.sqlite3")

    args = ap.parse_args(argv)
    configure_logging(debug=args.verbose, json=not args.plain_logs, command=args.cmd)

    if args.cmd == "demo":
        if args.rate <= 0:
            ap.error("--rate must be > 0")
        if args.sessions < 1:
            ap.error("--sessions must be >= 1")
        try:
            _window_from_args(args)
        except ValueError as e:
            ap.error(str(e))
        sys.exit(run_demo(args))
    if args.cmd == "orders":
        sys.exit(list_orders(args))

if __name__ == "__main__":
    main()
