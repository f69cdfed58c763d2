"""
Turf War - territory control and war resolution core for family-based crime games.
"""
