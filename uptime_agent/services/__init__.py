"""Services for scheduling monitors, pushing results and querying disks."""
