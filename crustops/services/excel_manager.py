"""
Excel File Manager with Concurrency Control

Lock-guarded spreadsheet operations for:
- The append-only order ledger (one row per placed order)
- Per-batch kitchen prep sheets (orders and remaining stock)
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from crustops.core.config import get_settings

logger = logging.getLogger(__name__)


class LedgerUnreadable(Exception):
    """The order ledger exists but cannot be parsed; it must not be overwritten."""


class ExcelManager:
    """Lock-guarded Excel file manager."""

    ORDER_COLUMNS = [
        "order_id",
        "batch_number",
        "date",
        "time_slot",
        "order_type",
        "customer_name",
        "customer_phone",
        "customer_email",
        "pizza_name",
        "quantity",
        "unit_price",
        "line_total",
        "order_status",
        "created_at",
        "exported_at",
    ]

    PREP_COLUMNS = [
        "time_slot",
        "pizza_name",
        "quantity",
        "order_type",
        "customer_name",
        "customer_phone",
        "order_status",
        "order_id",
    ]

    SUMMARY_COLUMNS = [
        "pizza_name",
        "max_quantity",
        "ordered",
        "available",
    ]

    # -------------------------------------------------------------------------
    # Paths (resolved per call so the data directory can change at runtime)
    # -------------------------------------------------------------------------

    @classmethod
    def data_dir(cls) -> Path:
        return Path(get_settings().data_directory)

    @classmethod
    def orders_file(cls) -> Path:
        return cls.data_dir() / get_settings().excel_filename

    @classmethod
    def batch_file(cls, batch_number: int) -> Path:
        return cls.data_dir() / f"batch_{batch_number:03d}_prep.xlsx"

    @staticmethod
    def _lock_for(file_path: Path) -> FileLock:
        return FileLock(str(file_path) + ".lock", timeout=get_settings().excel_lock_timeout)

    @classmethod
    def _ensure_data_dir(cls) -> None:
        """Create data directory if needed."""
        data_dir = cls.data_dir()
        if not data_dir.exists():
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {data_dir}")

    @classmethod
    def _load_or_create_df(cls, file_path: Path, columns: list) -> pd.DataFrame:
        """
        Existing sheet, or an empty frame when the file does not exist yet.

        Raises:
            LedgerUnreadable: the file exists but is not a readable workbook
        """
        if not file_path.exists():
            return pd.DataFrame(columns=columns)
        try:
            return pd.read_excel(file_path, engine="openpyxl")
        except Exception as e:
            raise LedgerUnreadable(f"{file_path} is unreadable ({e}); left untouched") from e

    # -------------------------------------------------------------------------
    # Order ledger
    # -------------------------------------------------------------------------

    @classmethod
    def export_order(cls, order_data: dict[str, Any]) -> dict[str, Any]:
        """Append one order to the ledger under a file lock."""
        cls._ensure_data_dir()

        order_id = order_data.get("order_id", "unknown")
        orders_file = cls.orders_file()
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        try:
            with cls._lock_for(orders_file):
                logger.debug(f"Lock acquired for Order {order_id}")

                df = cls._load_or_create_df(orders_file, cls.ORDER_COLUMNS)

                export_time = datetime.now().isoformat()
                quantity = int(order_data.get("quantity") or 0)
                unit_price = float(order_data.get("unit_price") or 0)
                new_row = {
                    "order_id": order_id,
                    "batch_number": order_data.get("batch_number"),
                    "date": order_data.get("date"),
                    "time_slot": order_data.get("time_slot"),
                    "order_type": order_data.get("order_type"),
                    "customer_name": order_data.get("customer_name"),
                    "customer_phone": order_data.get("customer_phone"),
                    "customer_email": order_data.get("customer_email"),
                    "pizza_name": order_data.get("pizza_name"),
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "line_total": round(quantity * unit_price, 2),
                    "order_status": order_data.get("order_status"),
                    "created_at": order_data.get("created_at", export_time),
                    "exported_at": export_time,
                }

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(orders_file), index=False, engine="openpyxl")

                logger.info(f"Order {order_id} exported to Excel")

                result["success"] = True
                result["message"] = f"Order {order_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for Order {order_id}")

        except LedgerUnreadable as e:
            result["message"] = str(e)
            logger.error(f"Order {order_id} not exported: {e}")

        except Timeout:
            result["message"] = f"Lock timeout ({get_settings().excel_lock_timeout}s)"
            logger.error(f"Lock timeout for Order {order_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting Order {order_id}")

        return result

    @classmethod
    def get_all_orders(cls) -> list[dict[str, Any]]:
        """Ledger rows as plain Python values (empty cells become None)."""
        orders_file = cls.orders_file()
        if not orders_file.exists():
            return []

        try:
            df = pd.read_excel(orders_file, engine="openpyxl")
            return df.astype(object).where(df.notna(), None).to_dict("records")
        except Exception as e:
            logger.error(f"Error reading orders: {e}")
            return []

    # -------------------------------------------------------------------------
    # Batch prep sheet
    # -------------------------------------------------------------------------

    @classmethod
    def write_batch_sheet(
        cls,
        batch_number: int,
        orders: list[dict[str, Any]],
        stock: list[dict[str, Any]],
    ) -> Path:
        """
        Write the kitchen prep sheet for a batch.

        Two sheets: ``orders`` sorted by time slot, and ``stock`` with the
        cap, ordered and remaining quantity per pizza. The file is rewritten
        on every call.

        Raises:
            filelock.Timeout: another writer holds the lock too long
        """
        cls._ensure_data_dir()
        batch_file = cls.batch_file(batch_number)

        orders_df = pd.DataFrame(orders, columns=cls.PREP_COLUMNS)
        if not orders_df.empty:
            # "16:30" sorts correctly once split into (hour, minute)
            slot_key = orders_df["time_slot"].map(
                lambda slot: tuple(int(part) for part in str(slot).split(":"))
            )
            orders_df = orders_df.assign(_slot=slot_key).sort_values(["_slot", "pizza_name"])
            orders_df = orders_df.drop(columns="_slot")

        stock_df = pd.DataFrame(stock, columns=cls.SUMMARY_COLUMNS)

        with cls._lock_for(batch_file):
            with pd.ExcelWriter(str(batch_file), engine="openpyxl") as writer:
                orders_df.to_excel(writer, sheet_name="orders", index=False)
                stock_df.to_excel(writer, sheet_name="stock", index=False)

        logger.info(f"Batch #{batch_number} prep sheet written: {batch_file} ({len(orders_df)} orders)")
        return batch_file

    @classmethod
    def clear_all(cls) -> bool:
        """Delete the ledger and every prep sheet."""
        data_dir = cls.data_dir()
        if not data_dir.exists():
            return True

        try:
            for f in data_dir.glob("*.xlsx*"):
                f.unlink()
            logger.info("All Excel files cleared")
            return True
        except OSError as e:
            logger.error(f"Error clearing files: {e}")
            return False
