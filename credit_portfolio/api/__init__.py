"""
API blueprints for Credit Portfolio Management System
"""
