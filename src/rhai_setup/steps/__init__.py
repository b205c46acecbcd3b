"""
One module per setup step. Each exposes ``run(ev) -> int`` returning the exit code.

Order of use: create_project, create_secrets, deploy_model; find_gpu_pods at
any time; delete_project to tear everything down.
"""
