"""
On-device background removal service package.

Exposes the pieces that decide which model runs on this machine, keep it
loaded, and push uploaded images through it one at a time.
"""
