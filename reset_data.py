"""
reset_data.py
-------------
Utility script to clear all stored data (orders, late fee policies, notifications)
from the local data.pkl file.

This script is designed for development and testing purposes.

Usage:
    $ python reset_data.py

After running this script, you can repopulate sample data by executing:
    $ python seeds.py
"""

from rental_lifecycle.models.store import Store


def main():
    """
    Clear all data from the persistent store and save the empty store back to disk.
    """
    store = Store.instance()

    store.orders.clear()
    store.policies.clear()
    store.notifications.clear()

    store.save()

    print("data.pkl has been successfully cleared.")
    print("Tip: Run `python seeds.py` to regenerate demo data.")


if __name__ == "__main__":
    main()
