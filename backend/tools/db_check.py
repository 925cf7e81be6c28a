import sqlite3
import sys

DB = sys.argv[1] if len(sys.argv) > 1 else "dev.db"
EMAIL = sys.argv[2].strip().lower() if len(sys.argv) > 2 else None

QUERIES = [
    (
        "Carts",
        "SELECT owner_id, email, item_count, total_cents, updated_at, notified_at, superseded_at FROM carts",
        "email",
        "updated_at",
    ),
    (
        "Abandoned Checkouts",
        "SELECT id, email, status, email_sent, followup_sent, recovery_count, last_activity_at, completed_at FROM abandoned_checkouts",
        "email",
        "last_activity_at",
    ),
    (
        "Payment Failures",
        "SELECT order_number, retry_token, email, status, email_sent, recovery_count, failed_at FROM payment_failures",
        "email",
        "failed_at",
    ),
    (
        "Discount Codes",
        "SELECT email, code, issued_at, expires_at, used, used_at, reminder_sent, expired, unsubscribed FROM discount_codes",
        "email",
        "issued_at",
    ),
    (
        "Orders",
        "SELECT order_number, customer_email, status, payment_status, total_cents, discount_code, created_at FROM orders",
        "customer_email",
        "created_at",
    ),
]

conn = sqlite3.connect(DB)
conn.row_factory = sqlite3.Row
cur = conn.cursor()

for title, sql, email_col, order_col in QUERIES:
    print(f"=== {title} ===")
    if EMAIL:
        cur.execute(f"{sql} WHERE {email_col}=? ORDER BY {order_col} DESC LIMIT 20", (EMAIL,))
    else:
        cur.execute(f"{sql} ORDER BY {order_col} DESC LIMIT 20")
    for r in cur.fetchall():
        print(dict(r))
    print()

conn.close()
