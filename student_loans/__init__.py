"""
Student Loans Backend

Loan applications, authentication and repayment recording for a student
micro-loan platform. All monetary values use Decimal and every repayment
runs inside a single storage transaction.
"""

__version__ = "1.0.0"
