"""HTTP routes for the ShopSphere API"""
