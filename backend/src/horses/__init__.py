"""Horse records, the tenant-owned data of a rescue"""
