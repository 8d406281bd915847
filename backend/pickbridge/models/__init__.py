"""Database models"""
from pickbridge.models.sales_order import SalesOrder, SalesOrderLine
from pickbridge.models.picking import OdooPicking
