"""Authenticated packet encryption and Bloom-filter replay protection."""