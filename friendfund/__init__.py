"""
FriendFund backend package.

This package provides a FastAPI application for peer crowdfunding: campaigns,
donations and friendly loans, with a ledger that keeps every campaign total
consistent with the contributions recorded against it.
"""
