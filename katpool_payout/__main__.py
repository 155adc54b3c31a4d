from katpool_payout.scheduler.main import run

run()
