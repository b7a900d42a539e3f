"""
Python client for the Urgent Sales API: session store, route guard, OTP
screen logic, tier selection and checkout redirect.
"""
