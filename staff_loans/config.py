"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class StaffLoansConfig(BaseSettings):
    """Staff loans service configuration"""

    # Database configuration
    database_url: str = "sqlite:///staff_loans.db"  # memory:// for in-memory storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Loan terms
    currency: str = "KES"
    min_term_months: int = 1
    max_term_months: int = 60
    salary_advance_interest_rate: str = "0"
    staff_loan_interest_rate: str = "12"
    emergency_loan_interest_rate: str = "12"
    default_max_salary_deduction_percent: str = "33"

    # Payroll configuration
    payroll_day: int = 25  # Day of month salaries (and deductions) are run

    # Approval engine configuration
    approval_engine_url: str = ""  # Empty = in-process engine
    approval_engine_timeout: float = 5.0
    approval_engine_api_key: str = ""
    salary_advance_flow_code: str = "SALARY_ADVANCE_DEFAULT"
    staff_loan_flow_code: str = "STAFF_LOAN_DEFAULT"

    class Config:
        env_prefix = "STAFF_LOANS_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = StaffLoansConfig()


def get_config() -> StaffLoansConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> StaffLoansConfig:
    """Reload configuration from environment"""
    global config
    config = StaffLoansConfig()
    return config
