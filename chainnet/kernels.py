"""
Numeric Kernels
===============

Pure functions implementing the math of every layer kind. A kernel never
keeps state: it receives the arrays it works on together with the offset
of the first used entry, reads and writes numpy views of those windows,
and returns nothing (or a scalar, for error kernels).

Image buffers are flat and channel-major: entry (c, x, y) of a
(depth, width, height) image lives at ``c * width * height + x * height + y``,
which is exactly ``array.reshape(depth, width, height)`` in C order.

Sign convention: the error signal flowing backwards is (expected - output),
so accumulated "gradients" point downhill and updates are ADDED to the
weights.

Kernels implemented:
- Affine transform (dense layers), forward and backward
- Element-wise weights, forward and backward
- Momentum update, shared by every weight-bearing layer
- Elementwise activations and softmax, forward and backward
- Convolution (im2col), forward and backward
- Max pooling, forward and backward
- Dropout, forward and backward
- Euclidean error
"""

import numpy as np

from .buffers import BufferSlice


def _window(array, offset, length, name):
    return BufferSlice(array, offset, length, name=name).view


# ============================================================================
# Affine transform
# ============================================================================

def apply_affine(input, input_offset, output, output_offset, weights, biases=None):
    """
    Forward pass of a dense layer: output[o] = sum_i input[i] * W[i, o] (+ b[o]).

    Args:
        input: Input array
        input_offset: Index of the first input entry
        output: Output array
        output_offset: Index of the first output entry
        weights: Weight matrix, shape (input_size, output_size)
        biases: Bias vector, shape (output_size,), or None
    """
    n_in, n_out = weights.shape
    x = _window(input, input_offset, n_in, 'input')
    y = _window(output, output_offset, n_out, 'output')

    y[...] = x @ weights
    if biases is not None:
        y += biases


def backpropagate_affine(input, input_offset, weights, output_error, output_error_offset,
                         input_error, input_error_offset, weight_gradients=None,
                         bias_gradients=None, learning=False):
    """
    Backward pass of a dense layer.

    inputError[i] = sum_o outputError[o] * W[i, o]

    When learning:
        gradW[i, o] += input[i] * outputError[o]
        gradB[o]    += outputError[o]
    """
    n_in, n_out = weights.shape
    x = _window(input, input_offset, n_in, 'input')
    delta = _window(output_error, output_error_offset, n_out, 'output error').copy()
    dx = _window(input_error, input_error_offset, n_in, 'input error')

    if learning:
        if weight_gradients is not None:
            weight_gradients += np.outer(x, delta)
        if bias_gradients is not None:
            bias_gradients += delta

    dx[...] = weights @ delta


def apply_elementwise_weights(input, input_offset, output, output_offset, weights):
    """output[i] = input[i] * w[i]"""
    length = weights.shape[0]
    x = _window(input, input_offset, length, 'input')
    y = _window(output, output_offset, length, 'output')
    y[...] = x * weights


def backpropagate_elementwise_weights(input, input_offset, weights, output_error, output_error_offset,
                                      input_error, input_error_offset, weight_gradients=None,
                                      learning=False):
    """
    inputError[i] = outputError[i] * w[i]

    When learning:
        gradW[i] += input[i] * outputError[i]
    """
    length = weights.shape[0]
    x = _window(input, input_offset, length, 'input')
    delta = _window(output_error, output_error_offset, length, 'output error').copy()
    dx = _window(input_error, input_error_offset, length, 'input error')

    if learning and weight_gradients is not None:
        weight_gradients += x * delta
    dx[...] = weights * delta


def apply_momentum_update(values, gradients, previous_updates, rate, momentum=0.0):
    """
    Gradient descent with momentum, in place.

        update   = gradient * rate + momentum * previous_update
        value   += update
        previous_update = update
        gradient = 0

    All three arrays keep their identity, so siamese layers sharing them see
    the change.
    """
    update = gradients * rate + previous_updates * momentum
    values += update
    previous_updates[...] = update
    gradients.fill(0.0)


# ============================================================================
# Activations
# ============================================================================

def apply_activation(input, input_offset, output, output_offset, length, activation):
    """Elementwise output[i] = f(input[i]); softmax is dispatched to apply_softmax."""
    if not activation.elementwise:
        apply_softmax(input, input_offset, output, output_offset, length)
        return

    x = _window(input, input_offset, length, 'input')
    y = _window(output, output_offset, length, 'output')
    y[...] = activation.forward(x)


def backpropagate_activation(input, input_offset, output, output_offset, length,
                             output_error, output_error_offset, input_error,
                             input_error_offset, activation):
    """
    inputError[i] = outputError[i] * f'(input[i], output[i]).

    The derivative is evaluated from the cached input and output of the
    latest feed, never by recomputing f.
    """
    if not activation.elementwise:
        backpropagate_softmax(output, output_offset, length, output_error, output_error_offset,
                              input_error, input_error_offset)
        return

    x = _window(input, input_offset, length, 'input')
    y = _window(output, output_offset, length, 'output')
    delta = _window(output_error, output_error_offset, length, 'output error')
    dx = _window(input_error, input_error_offset, length, 'input error')

    dx[...] = delta * activation.derivative(x, y)


def apply_softmax(input, input_offset, output, output_offset, length):
    """
    Softmax with max subtraction.

        output[i] = exp(input[i] - max) / sum_j exp(input[j] - max)
    """
    x = _window(input, input_offset, length, 'input')
    y = _window(output, output_offset, length, 'output')

    shifted = np.exp(x - np.max(x))
    y[...] = shifted / np.sum(shifted)


def backpropagate_softmax(output, output_offset, length, output_error, output_error_offset,
                          input_error, input_error_offset):
    """
    Softmax backward through the full Jacobian.

        inputError[i] = sum_j outputError[j] * (delta_ij * y_i - y_i * y_j)
                      = y_i * (outputError[i] - sum_j outputError[j] * y_j)
    """
    y = _window(output, output_offset, length, 'output')
    delta = _window(output_error, output_error_offset, length, 'output error')
    dx = _window(input_error, input_error_offset, length, 'input error')

    dx[...] = y * (delta - np.dot(delta, y))


# ============================================================================
# Convolution
# ============================================================================

def convolution_output_side(input_side, kernel_side, stride, padding):
    """Spatial output size: (input + 2 * padding - kernel) // stride + 1."""
    return (input_side + 2 * padding - kernel_side) // stride + 1


def _pad(x, padding):
    if padding == 0:
        return x
    return np.pad(x, ((0, 0), (padding, padding), (padding, padding)), mode='constant')


def _im2col(x_padded, kernel_side, stride, w_out, h_out):
    """
    Convert image patches to columns.

    Uses numpy stride tricks to create a view (no memory copy) of all
    patches the kernel visits, then reshapes for a single matrix multiply.

    Returns:
        col: Shape (w_out * h_out, channels * kernel_side * kernel_side)
    """
    x_padded = np.ascontiguousarray(x_padded)
    channels = x_padded.shape[0]
    k = kernel_side

    shape = (channels, k, k, w_out, h_out)
    strides = (
        x_padded.strides[0],           # channel
        x_padded.strides[1],           # kernel x
        x_padded.strides[2],           # kernel y
        x_padded.strides[1] * stride,  # output x (strided)
        x_padded.strides[2] * stride,  # output y (strided)
    )
    patches = np.lib.stride_tricks.as_strided(x_padded, shape=shape, strides=strides, writeable=False)

    # (C, k, k, w_out, h_out) -> (w_out * h_out, C * k * k)
    return patches.transpose(3, 4, 0, 1, 2).reshape(w_out * h_out, -1)


def _col2im(col, padded_shape, kernel_side, stride, w_out, h_out):
    """
    Scatter columns back to image positions (inverse of im2col).

    Overlapping patches accumulate.
    """
    channels = padded_shape[0]
    k = kernel_side
    col = col.reshape(w_out, h_out, channels, k, k)

    x_padded = np.zeros(padded_shape, dtype=col.dtype)
    for i in range(w_out):
        for j in range(h_out):
            x_start = i * stride
            y_start = j * stride
            x_padded[:, x_start:x_start + k, y_start:y_start + k] += col[i, j]

    return x_padded


def apply_convolution(input, input_offset, input_shape, output, output_offset, output_shape,
                      kernels, biases=None, stride=1, padding=0):
    """
    Convolution forward pass (before activation).

        out[o, x, y] = sum_{c, kx, ky} K[o, c, kx, ky] * in[c, x*s - p + kx, y*s - p + ky] (+ b[o])

    Input positions outside the image read as zero.

    Args:
        input_shape: (depth, width, height) of the input image
        output_shape: (depth, width, height) of the output image
        kernels: Kernel bank, shape (out_depth, in_depth, kernel_side, kernel_side)
        biases: Per-output-channel bias, or None
    """
    c_out, w_out, h_out = output_shape
    kernel_side = kernels.shape[2]

    x = _window(input, input_offset, int(np.prod(input_shape)), 'input').reshape(input_shape)
    y = _window(output, output_offset, int(np.prod(output_shape)), 'output').reshape(output_shape)

    col = _im2col(_pad(x, padding), kernel_side, stride, w_out, h_out)

    # (w_out * h_out, C_in * k * k) @ (C_in * k * k, C_out) = (w_out * h_out, C_out)
    out = col @ kernels.reshape(c_out, -1).T

    y[...] = out.T.reshape(output_shape)
    if biases is not None:
        y += biases.reshape(-1, 1, 1)


def backpropagate_convolution(input, input_offset, input_shape, output_error, output_error_offset,
                              output_shape, input_error, input_error_offset, kernels,
                              stride=1, padding=0, kernel_gradients=None,
                              bias_gradients=None, learning=False):
    """
    Convolution backward pass.

    ``output_error`` is the error w.r.t. the convolution sum, i.e. already
    multiplied by the activation derivative.

    Computes:
    1. inputError: the error distributed back through the kernels
    2. When learning, kernel and bias gradients accumulated in place
    """
    c_in, w_in, h_in = input_shape
    c_out, w_out, h_out = output_shape
    kernel_side = kernels.shape[2]

    x = _window(input, input_offset, int(np.prod(input_shape)), 'input').reshape(input_shape)
    delta = _window(output_error, output_error_offset, int(np.prod(output_shape)),
                    'output error').reshape(output_shape)
    dx = _window(input_error, input_error_offset, int(np.prod(input_shape)),
                 'input error').reshape(input_shape)

    # (C_out, w_out, h_out) -> (w_out * h_out, C_out)
    delta_col = delta.reshape(c_out, -1).T.copy()

    if learning:
        x_padded = _pad(x, padding)
        col = _im2col(x_padded, kernel_side, stride, w_out, h_out)
        if kernel_gradients is not None:
            kernel_gradients += (col.T @ delta_col).T.reshape(kernels.shape)
        if bias_gradients is not None:
            bias_gradients += delta.sum(axis=(1, 2))

    padded_shape = (c_in, w_in + 2 * padding, h_in + 2 * padding)
    dcol = delta_col @ kernels.reshape(c_out, -1)
    dx_padded = _col2im(dcol, padded_shape, kernel_side, stride, w_out, h_out)

    dx[...] = dx_padded[:, padding:padding + w_in, padding:padding + h_in]


# ============================================================================
# Max pooling
# ============================================================================

def _pool_windows(x, x_scale, y_scale):
    """(C, W, H) -> (C, W // xs, H // ys, xs * ys); trailing rows/columns are ignored."""
    channels, width, height = x.shape
    w_out = width // x_scale
    h_out = height // y_scale
    x = x[:, :w_out * x_scale, :h_out * y_scale]
    windows = x.reshape(channels, w_out, x_scale, h_out, y_scale).transpose(0, 1, 3, 2, 4)
    return windows.reshape(channels, w_out, h_out, x_scale * y_scale)


def apply_max_pool(input, input_offset, input_shape, output, output_offset, x_scale, y_scale):
    """Each output is the max over its non-overlapping x_scale * y_scale window."""
    channels, width, height = input_shape
    output_shape = (channels, width // x_scale, height // y_scale)

    x = _window(input, input_offset, int(np.prod(input_shape)), 'input').reshape(input_shape)
    y = _window(output, output_offset, int(np.prod(output_shape)), 'output').reshape(output_shape)

    y[...] = _pool_windows(x, x_scale, y_scale).max(axis=-1)


def backpropagate_max_pool(input, input_offset, input_shape, output_error, output_error_offset,
                           input_error, input_error_offset, x_scale, y_scale):
    """
    Route each output error to the input position that held the max.

    Windows are scanned x-major then y, and the first position attaining
    the max wins ties. Every other input position receives zero.
    """
    channels, width, height = input_shape
    w_out = width // x_scale
    h_out = height // y_scale

    x = _window(input, input_offset, int(np.prod(input_shape)), 'input').reshape(input_shape)
    delta = _window(output_error, output_error_offset, channels * w_out * h_out,
                    'output error').reshape(channels, w_out, h_out)
    dx = _window(input_error, input_error_offset, int(np.prod(input_shape)),
                 'input error').reshape(input_shape)

    max_indices = _pool_windows(x, x_scale, y_scale).argmax(axis=-1)

    routed = np.zeros((channels, w_out, h_out, x_scale * y_scale), dtype=dx.dtype)
    np.put_along_axis(routed, max_indices[..., np.newaxis], delta[..., np.newaxis], axis=-1)
    routed = routed.reshape(channels, w_out, h_out, x_scale, y_scale).transpose(0, 1, 3, 2, 4)

    dx[...] = 0.0
    dx[:, :w_out * x_scale, :h_out * y_scale] = routed.reshape(channels, w_out * x_scale, h_out * y_scale)


# ============================================================================
# Dropout
# ============================================================================

def apply_dropout(input, input_offset, output, output_offset, length, dropped, drop_chance,
                  learning, rng):
    """
    Dropout forward pass.

    Learning: each unit is zeroed independently with probability
    ``drop_chance`` and the mask is written into ``dropped`` (True = dropped).
    Inference: every unit is scaled by (1 - drop_chance), no mask is drawn.
    """
    x = _window(input, input_offset, length, 'input')
    y = _window(output, output_offset, length, 'output')

    if learning:
        dropped[...] = rng.uniform(length) < drop_chance
        y[...] = np.where(dropped, 0.0, x)
    else:
        y[...] = x * (1.0 - drop_chance)


def backpropagate_dropout(output_error, output_error_offset, input_error, input_error_offset,
                          length, dropped, drop_chance, learning):
    """Zero the error at dropped positions (learning) or scale it by (1 - p) (inference)."""
    delta = _window(output_error, output_error_offset, length, 'output error')
    dx = _window(input_error, input_error_offset, length, 'input error')

    if learning:
        dx[...] = np.where(dropped, 0.0, delta)
    else:
        dx[...] = delta * (1.0 - drop_chance)


# ============================================================================
# Error
# ============================================================================

def euclidean_error(output, output_offset, expected, expected_offset, error, error_offset, length):
    """
    error = expected - output, written into ``error``; returns ||error||.

    Every array is read at its own offset.
    """
    y = _window(output, output_offset, length, 'output')
    target = _window(expected, expected_offset, length, 'expected output')
    e = _window(error, error_offset, length, 'error')

    e[...] = target - y
    return float(np.sqrt(np.dot(e, e)))
