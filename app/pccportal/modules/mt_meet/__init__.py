"""
MT Meet: Master Technician meets with an agenda, attendance tracking and post-meet feedback.
"""
