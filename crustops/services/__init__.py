"""
                        Services Module

Business logic used by the API and the Celery worker.

Services:
    - availability: batch stock computation and atomic allocation
    - status_flow: suggested next status and customer status messages
    - otp: phone login codes
    - notifications: SMS/email (mock in development, Twilio/SendGrid otherwise)
    - excel_manager: lock-guarded spreadsheet exports
"""

from crustops.services.excel_manager import ExcelManager

__all__ = ["ExcelManager"]
