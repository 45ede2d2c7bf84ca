from bpm_portal.server import run

run()
