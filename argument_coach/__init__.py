# Argument coach service
