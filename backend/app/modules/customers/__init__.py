"""
Customers Module

Customer persistence collaborator: lookup and prospect flagging only.
"""
