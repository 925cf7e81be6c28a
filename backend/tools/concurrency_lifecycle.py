import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import argparse
import concurrent.futures
import json

import requests

BASE = os.environ.get("STOREFRONT_BASE", "http://127.0.0.1:8000")
ADMIN_KEY = os.environ.get("ADMIN_API_KEY", "change-this-admin-key")


def redeem_task(i, code):
    try:
        r = requests.post(f"{BASE}/api/newsletter/use-discount", json={"discountCode": code}, timeout=10)
        return (i, "redeem", r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "redeem", "ERR", str(e))


def sweep_task(i, kind):
    try:
        r = requests.post(f"{BASE}/api/admin/sweeps/{kind}", headers={"X-Admin-Key": ADMIN_KEY}, timeout=60)
        return (i, "sweep", r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "sweep", "ERR", str(e))


def recover_task(i, token):
    try:
        r = requests.get(f"{BASE}/api/checkout/recover/{token}", timeout=10)
        return (i, "recover", r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "recover", "ERR", str(e))


def _run(workers, fn, *args):
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(fn, i, *args) for i in range(workers)]
        results = [f.result() for f in futures]
    for r in results:
        print(r)
    return results


def run_redeem_concurrent(workers, email):
    sub = requests.post(f"{BASE}/api/newsletter/subscribe", json={"email": email}, timeout=10).json()
    code = sub["discountCode"]
    print(f"Running redeem test: workers={workers}, code={code}")
    results = _run(workers, redeem_task, code)
    ok = [r for r in results if r[2] == 200]
    print(f"Successful redemptions: {len(ok)} (expected 1)")


def run_sweep_concurrent(workers, kind):
    print(f"Running sweep test: workers={workers}, kind={kind}")
    results = _run(workers, sweep_task, kind)
    notified = 0
    for r in results:
        if r[2] == 200:
            notified += json.loads(r[3])["report"].get("notified", 0)
    skipped = sum(1 for r in results if r[2] == 409)
    print(f"Total notified across runs: {notified}, overlapping runs skipped: {skipped}")


def run_recover_concurrent(workers, email):
    cap = requests.post(
        f"{BASE}/api/checkout/email-capture",
        json={"email": email, "cart": [{"sku": "LOAD-1", "quantity": 1, "price_cents": 1000}]},
        timeout=10,
    ).json()
    token = cap["checkoutId"]
    print(f"Running recover test: workers={workers}, token={token}")
    _run(workers, recover_task, token)
    final = requests.get(f"{BASE}/api/checkout/recover/{token}", timeout=10).json()
    print("Final recovery count:", final["checkout"]["recoveryCount"], f"(expected {workers + 1})")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency test tool for lifecycle endpoints.")
    sub = parser.add_subparsers(dest="mode", required=True)

    r = sub.add_parser("redeem")
    r.add_argument("--email", default="load-redeem@example.com")
    r.add_argument("--workers", type=int, default=8)

    s = sub.add_parser("sweep")
    s.add_argument("--kind", default="carts")
    s.add_argument("--workers", type=int, default=4)

    c = sub.add_parser("recover")
    c.add_argument("--email", default="load-recover@example.com")
    c.add_argument("--workers", type=int, default=8)

    args = parser.parse_args()

    if args.mode == "redeem":
        run_redeem_concurrent(args.workers, args.email)
    elif args.mode == "sweep":
        run_sweep_concurrent(args.workers, args.kind)
    elif args.mode == "recover":
        run_recover_concurrent(args.workers, args.email)
