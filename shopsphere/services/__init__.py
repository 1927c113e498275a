"""Domain services for the ShopSphere API"""
