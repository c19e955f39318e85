import capexpand as cx


class TestSolverOptions:
    def test_highs_options(self):
        solver = cx.HighsSolver(mip_gap=0.02, time_limit_seconds=60, log_to_console=False, threads=4)
        assert solver.name == 'highs'
        assert solver.options == {'mip_rel_gap': 0.02, 'time_limit': 60.0, 'log_to_console': False, 'threads': 4}

    def test_unset_options_are_dropped(self):
        solver = cx.HighsSolver(mip_gap=0, time_limit_seconds=10, log_to_console=True)
        assert 'threads' not in solver.options

    def test_extra_options_override(self):
        solver = cx.HighsSolver(
            mip_gap=0, time_limit_seconds=10, log_to_console=False, extra_options={'solver': 'ipm', 'time_limit': 5}
        )
        assert solver.options['solver'] == 'ipm'
        assert solver.options['time_limit'] == 5

    def test_gurobi_options(self):
        solver = cx.GurobiSolver(mip_gap=0.001, time_limit_seconds=30, log_to_console=True)
        assert solver.name == 'gurobi'
        assert solver.options == {'MIPGap': 0.001, 'TimeLimit': 30, 'LogToConsole': 1}

    def test_defaults_follow_config(self):
        cx.CONFIG.Solving.mip_gap = 0.05
        cx.CONFIG.Solving.time_limit_seconds = 42
        solver = cx.HighsSolver()
        assert solver.mip_gap == 0.05
        assert solver.time_limit_seconds == 42
        assert solver.log_to_console is False
